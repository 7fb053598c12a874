"""FastAPI application for the oracle service."""

import contextlib
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..domain.models.errors import LedgerUnavailableError, TransactionReverted
from ..infrastructure.dependencies import ServiceContainer, get_service_container
from .endpoints import assertions, health, orchestrator, questions

logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Service container (the process-wide one if omitted)
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the orchestrator on startup and stop it with its providers on shutdown."""
        service_container = app.state.container
        await service_container.start()

        yield  # Application runs here

        await service_container.shutdown()

    app = FastAPI(
        title="Clarity Oracle API",
        description="Optimistic assertions answered by multi-provider AI consensus",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container or get_service_container()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TransactionReverted)
    async def transaction_reverted_handler(request: Request, exc: TransactionReverted) -> JSONResponse:
        return JSONResponse(status_code=409, content={"reason": exc.reason.value, "message": exc.message})

    @app.exception_handler(LedgerUnavailableError)
    async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"reason": "ledger_unavailable", "message": exc.message})

    app.include_router(health.router)
    app.include_router(questions.router)
    app.include_router(assertions.router)
    app.include_router(orchestrator.router)
    return app


def main() -> None:
    """Run the API server."""
    import uvicorn

    container = get_service_container()
    logging.basicConfig(
        level=container.settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(create_app(container), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
