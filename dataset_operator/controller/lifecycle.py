"""Controller lifecycle management for FastAPI lifespan integration."""

from __future__ import annotations

import structlog

from dataset_operator.config import get_settings
from dataset_operator.controller.manager import DatasetController
from dataset_operator.controller.reconciler import DatasetReconciler
from dataset_operator.store import K8sObjectStore, ObjectStore

logger = structlog.get_logger()

# Global controller instance
_controller: DatasetController | None = None
_store: ObjectStore | None = None


async def init_controller() -> DatasetController:
    """Build the store, reconciler and controller, and start the controller.

    Called during FastAPI lifespan startup.
    """
    global _controller, _store

    settings = get_settings()
    logger.info(
        "controller.init",
        namespace=settings.kube.namespace or "*",
        resource=f"{settings.kube.plural}.{settings.kube.group}/{settings.kube.version}",
        workers=settings.controller.workers,
    )

    _store = K8sObjectStore(settings.kube)
    reconciler = DatasetReconciler(_store, settings.controller, settings.kube)
    _controller = DatasetController(_store, reconciler, settings.kube, settings.controller)
    await _controller.start()
    return _controller


async def shutdown_controller() -> None:
    """Stop the controller and release API connections.

    Called during FastAPI lifespan shutdown.
    """
    global _controller, _store

    if _controller is not None:
        await _controller.stop()
        _controller = None
    if _store is not None:
        await _store.close()
        _store = None


def get_controller() -> DatasetController | None:
    """Get the current controller instance (for probes and tests)."""
    return _controller
