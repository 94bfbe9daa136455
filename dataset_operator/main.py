"""Dataset operator process entry point.

Serves liveness/readiness probes while the controller runs in the
background of the same event loop.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from dataset_operator import __version__
from dataset_operator.config import get_settings
from dataset_operator.controller.lifecycle import (
    get_controller,
    init_controller,
    shutdown_controller,
)
from dataset_operator.log import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    configure_logging(get_settings().logging)
    logger.info("dataset_operator.startup", version=__version__)

    await init_controller()

    yield

    # Shutdown
    logger.info("dataset_operator.shutdown")
    await shutdown_controller()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Dataset Operator",
        description="Reconciles Dataset resources onto persistent volumes",
        version=__version__,
        lifespan=lifespan,
    )

    # Liveness
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    # Readiness: the controller is watching and workers are up
    @app.get("/readyz")
    async def readyz():
        controller = get_controller()
        if controller is None or not controller.is_running:
            return JSONResponse(status_code=503, content={"status": "not_ready"})
        return {"status": "ready"}

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dataset_operator.main:app",
        host=settings.server.host,
        port=settings.server.port,
    )
