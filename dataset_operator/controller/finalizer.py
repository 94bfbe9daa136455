"""Finalizer manager."""

from __future__ import annotations

from dataset_operator.controller.steps import ReconcileStep
from dataset_operator.models import Dataset


class FinalizerManager(ReconcileStep):
    """Gate physical deletion behind the cleanup finalizer.

    Runs last on the deletion path, so clearing the finalizers there means
    dependent cleanup has already succeeded (or been forced).
    """

    condition_type = None

    @property
    def name(self) -> str:
        return "finalizer"

    async def run(self, dataset: Dataset) -> None:
        finalizer = self._config.finalizer

        if dataset.is_deleted:
            dataset.metadata.finalizers = []
            self._log.info("finalizer.removed", dataset=dataset.key)
        elif finalizer in dataset.metadata.finalizers:
            return
        else:
            dataset.metadata.finalizers = [*dataset.metadata.finalizers, finalizer]
            self._log.info("finalizer.added", dataset=dataset.key, finalizer=finalizer)

        updated = await self._store.update_dataset(dataset.to_object())
        meta = updated.get("metadata") or {}
        dataset.metadata.resource_version = meta.get("resourceVersion")
        dataset.metadata.finalizers = list(meta.get("finalizers") or [])
