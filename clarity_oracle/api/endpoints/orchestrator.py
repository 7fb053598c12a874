"""Orchestrator status endpoint."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...infrastructure.dependencies import ServiceContainer
from .dependencies import get_container

router = APIRouter(prefix="/orchestrator", tags=["orchestrator"])


@router.get("/status")
async def orchestrator_status(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """Per-question processing state and the last failure reason."""
    orchestrator = await container.get_orchestrator()
    return orchestrator.status()
