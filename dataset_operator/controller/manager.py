"""Dataset controller - watch loop and workers."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from dataset_operator.controller.queue import Key, WorkQueue
from dataset_operator.controller.reconciler import DatasetReconciler, ReconcileResult

if TYPE_CHECKING:
    from dataset_operator.config import ControllerConfig, KubeConfig
    from dataset_operator.store import Manifest, ObjectStore

logger = structlog.get_logger()

# Pause before re-listing after a failed list or watch
WATCH_RETRY_SECONDS = 5.0


def key_of(obj: "Manifest") -> Key | None:
    meta = obj.get("metadata") or {}
    name = meta.get("name")
    if not name:
        return None
    return meta.get("namespace") or "default", name


class DatasetController:
    """Feeds Dataset keys from the API server to reconcile workers.

    Responsibilities:
    - List and watch Datasets, re-listing when the watch expires or fails
    - Re-list periodically so missed events still converge
    - Run N workers; the queue keeps each key on at most one worker
    - Turn each pass's result into a delayed re-add or a backoff retry

    Usage:
        controller = DatasetController(store, reconciler, settings.kube, settings.controller)
        await controller.start()
        ...
        await controller.stop()
    """

    def __init__(
        self,
        store: "ObjectStore",
        reconciler: DatasetReconciler,
        kube: "KubeConfig",
        config: "ControllerConfig",
        queue: WorkQueue | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._namespace = kube.namespace
        self._config = config
        self._queue = queue or WorkQueue(
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        self._log = logger.bind(service="dataset_controller")

        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    async def start(self) -> None:
        if self._running:
            self._log.warning("controller.already_running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._watch_loop(), name="dataset-watch"),
            asyncio.create_task(self._resync_loop(), name="dataset-resync"),
        ]
        for i in range(self._config.workers):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"dataset-worker-{i}"))

        self._log.info(
            "controller.started",
            namespace=self._namespace or "*",
            workers=self._config.workers,
            resync_seconds=self._config.resync_seconds,
        )

    async def stop(self) -> None:
        """Stop all loops. Passes in flight are cancelled."""
        if not self._running:
            return

        self._log.info("controller.stopping")
        self._running = False
        self._queue.shutdown()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        self._log.info("controller.stopped")

    def enqueue(self, obj: "Manifest") -> None:
        key = key_of(obj)
        if key is not None:
            self._queue.add(key)

    async def enqueue_all(self) -> str | None:
        """List every Dataset and queue it.

        Returns:
            The list's resourceVersion, to watch from
        """
        listing = await self._store.list_datasets(self._namespace)
        for item in listing.items:
            self.enqueue(item)
        self._log.debug("controller.listed", count=len(listing.items))
        return listing.resource_version

    async def process(self, key: Key) -> ReconcileResult:
        """Run one pass for ``key`` and schedule the next one."""
        try:
            result = await self._reconciler.reconcile(*key)
        except Exception as e:
            self._log.exception("controller.reconcile.crashed", dataset="/".join(key), error=str(e))
            result = ReconcileResult(error=e)

        if result.error is not None:
            delay = self._queue.add_rate_limited(key)
            self._log.info(
                "controller.reconcile.retry",
                dataset="/".join(key),
                delay=delay,
                error=str(result.error),
            )
            return result

        self._queue.forget(key)
        if result.requeue_after:
            self._queue.add_after(key, result.requeue_after)
        return result

    async def _worker(self, index: int) -> None:
        log = self._log.bind(worker=index)
        while self._running:
            key = await self._queue.get()
            try:
                await self.process(key)
            except Exception as e:
                log.exception("controller.worker.error", dataset="/".join(key), error=str(e))
            finally:
                self._queue.done(key)

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                resource_version = await self.enqueue_all()
                async for event in self._store.watch_datasets(
                    self._namespace, resource_version=resource_version
                ):
                    if event.type == "BOOKMARK":
                        continue
                    self.enqueue(event.object)
                self._log.debug("controller.watch.closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.warning("controller.watch.error", error=str(e))
                await asyncio.sleep(WATCH_RETRY_SECONDS)

    async def _resync_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.resync_seconds)
            try:
                await self.enqueue_all()
            except Exception as e:
                self._log.warning("controller.resync.error", error=str(e))
