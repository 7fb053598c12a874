"""Health check endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...infrastructure.dependencies import ServiceContainer
from .dependencies import get_container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """Check the health of all service components.

    Returns:
        Provider availability, orchestrator state and ledger head
    """
    orchestrator = container.orchestrator
    return {
        "status": "healthy",
        "providers": container.get_provider_factory().available_providers,
        "orchestrator_running": bool(orchestrator and orchestrator.is_running),
        "block_number": await container.get_ledger().block_number(),
    }
