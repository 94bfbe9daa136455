"""Object store base class - cluster API abstraction.

The store is responsible ONLY for object CRUD and watch delivery.
It does NOT handle:
- Ownership checks
- Retry/backoff
- Status derivation

Objects are exchanged as plain manifests (camelCase dicts, as the API server
serializes them). Every call raises the errors from
``dataset_operator.errors``:
- NotFoundError: object does not exist
- AlreadyExistsError: create of an existing name
- ConflictError: update with a stale resourceVersion
- StoreError: anything else
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

Manifest = dict[str, Any]


@dataclass
class WatchEvent:
    """A Dataset change delivered by the watch stream."""

    type: str  # ADDED | MODIFIED | DELETED | BOOKMARK
    object: Manifest

    @property
    def namespace(self) -> str:
        return self.object.get("metadata", {}).get("namespace", "")

    @property
    def name(self) -> str:
        return self.object.get("metadata", {}).get("name", "")


@dataclass
class DatasetList:
    """Result of listing Datasets, with the version to start watching from."""

    items: list[Manifest]
    resource_version: str | None = None


class ObjectStore(ABC):
    """Abstract interface to the cluster object store."""

    # Datasets

    @abstractmethod
    async def get_dataset(self, namespace: str, name: str) -> Manifest:
        """Get a Dataset."""
        ...

    @abstractmethod
    async def list_datasets(self, namespace: str | None = None) -> DatasetList:
        """List Datasets in one namespace, or all namespaces for None."""
        ...

    @abstractmethod
    def watch_datasets(
        self,
        namespace: str | None = None,
        *,
        resource_version: str | None = None,
    ) -> AsyncIterator[WatchEvent]:
        """Stream Dataset changes until the server closes the watch."""
        ...

    @abstractmethod
    async def update_dataset(self, dataset: Manifest) -> Manifest:
        """Replace a Dataset's metadata and spec (status is ignored)."""
        ...

    @abstractmethod
    async def update_dataset_status(self, dataset: Manifest) -> Manifest:
        """Replace a Dataset's status subresource."""
        ...

    # Persistent volume claims

    @abstractmethod
    async def get_claim(self, namespace: str, name: str) -> Manifest:
        ...

    @abstractmethod
    async def create_claim(self, namespace: str, claim: Manifest) -> Manifest:
        ...

    @abstractmethod
    async def update_claim(self, namespace: str, claim: Manifest) -> Manifest:
        ...

    @abstractmethod
    async def delete_claim(self, namespace: str, name: str) -> None:
        ...

    # Persistent volumes (cluster-scoped)

    @abstractmethod
    async def get_volume(self, name: str) -> Manifest:
        ...

    @abstractmethod
    async def create_volume(self, volume: Manifest) -> Manifest:
        ...

    @abstractmethod
    async def delete_volume(self, name: str) -> None:
        ...

    # Config maps

    @abstractmethod
    async def get_config_map(self, namespace: str, name: str) -> Manifest:
        ...

    @abstractmethod
    async def create_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        ...

    @abstractmethod
    async def update_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        ...

    # Jobs

    @abstractmethod
    async def get_job(self, namespace: str, name: str) -> Manifest:
        ...

    @abstractmethod
    async def create_job(self, namespace: str, job: Manifest) -> Manifest:
        ...

    @abstractmethod
    async def list_jobs(self, namespace: str, *, labels: dict[str, str]) -> list[Manifest]:
        ...

    @abstractmethod
    async def delete_job(self, namespace: str, name: str) -> None:
        """Delete a job and, in the background, its pods."""
        ...

    # Namespaces

    @abstractmethod
    async def get_namespace(self, name: str) -> Manifest:
        ...

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        return None
