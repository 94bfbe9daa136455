"""Reconcile step base class and shared helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from dataset_operator.errors import DependencyNotReadyError, StoreError
from dataset_operator.models import Dataset
from dataset_operator.models.source import parse_reference_uri
from dataset_operator.utils.datetime import utcnow

if TYPE_CHECKING:
    from dataset_operator.config import ControllerConfig, KubeConfig
    from dataset_operator.store import ObjectStore

logger = structlog.get_logger()


class ReconcileStep(ABC):
    """One sub-reconciler in a Dataset's chain.

    Each step mutates only its own part of ``dataset.status`` and raises on
    failure. The dispatcher records the outcome under ``condition_type``;
    steps with no condition type run silently.
    """

    condition_type: str | None = None

    def __init__(
        self,
        store: "ObjectStore",
        config: "ControllerConfig",
        kube: "KubeConfig",
    ) -> None:
        self._store = store
        self._config = config
        self._kube = kube
        self._log = logger.bind(step=self.name)

    @property
    def name(self) -> str:
        return self.condition_type or type(self).__name__

    @property
    def label_key(self) -> str:
        return self._config.dataset_label

    def force_delete(self, dataset: Dataset, now: datetime | None = None) -> bool:
        """Whether the deletion grace window has passed."""
        return is_force_delete(dataset, self._config.force_delete_grace_seconds, now)

    @abstractmethod
    async def run(self, dataset: Dataset) -> None:
        """Drive the step's part of the Dataset towards its desired state."""
        ...


def is_force_delete(dataset: Dataset, grace_seconds: float, now: datetime | None = None) -> bool:
    deleted_at = dataset.metadata.deletion_timestamp
    if deleted_at is None:
        return False
    return deleted_at + timedelta(seconds=grace_seconds) < (now or utcnow())


async def fetch_source_dataset(store: "ObjectStore", dataset: Dataset) -> Dataset:
    """Load the Dataset a REFERENCE Dataset points at."""
    ref = parse_reference_uri(dataset.spec.source.uri)
    try:
        obj = await store.get_dataset(ref.namespace, ref.name)
    except StoreError as e:
        raise DependencyNotReadyError(
            f"fetch source dataset {dataset.spec.source.uri} error: {e}",
            details={"source": str(ref)},
        ) from e
    return Dataset.from_object(obj)
