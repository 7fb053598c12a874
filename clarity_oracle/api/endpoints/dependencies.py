"""FastAPI dependencies resolving services from the application's container."""

from fastapi import Request

from ...infrastructure.dependencies import ServiceContainer
from ...infrastructure.ledger.in_memory_ledger import InMemoryLedger


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency for the service container."""
    return request.app.state.container


def get_ledger(request: Request) -> InMemoryLedger:
    """FastAPI dependency for the ledger."""
    return get_container(request).get_ledger()
