"""Fake implementations for testing.

These fakes allow unit tests to run without a Kubernetes API server.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections.abc import AsyncIterator
from typing import Any

from dataset_operator.errors import AlreadyExistsError, ConflictError, NotFoundError
from dataset_operator.store.base import DatasetList, Manifest, ObjectStore, WatchEvent

CREATED_AT = "2024-01-01T00:00:00Z"


def make_dataset(
    name: str = "ds",
    namespace: str = "default",
    *,
    source_type: str = "S3",
    uri: str = "s3://bucket/path",
    options: dict[str, str] | None = None,
    data_sync_round: int = 1,
    status: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    **spec: Any,
) -> Manifest:
    """Build a Dataset manifest as the API server would return it."""
    return {
        "apiVersion": "dataset.baizeai.io/v1alpha1",
        "kind": "Dataset",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{namespace}-{name}",
            "creationTimestamp": CREATED_AT,
            **(metadata or {}),
        },
        "spec": {
            "source": {"type": source_type, "uri": uri, "options": options or {}},
            "dataSyncRound": data_sync_round,
            **spec,
        },
        "status": status or {},
    }


class FakeObjectStore(ObjectStore):
    """In-memory object store for unit testing.

    Records all method calls for assertion, supports per-method error
    injection and enforces resourceVersion on Dataset writes the way the API
    server does.
    """

    def __init__(self) -> None:
        self.datasets: dict[tuple[str, str], Manifest] = {}
        self.claims: dict[tuple[str, str], Manifest] = {}
        self.volumes: dict[str, Manifest] = {}
        self.config_maps: dict[tuple[str, str], Manifest] = {}
        self.jobs: dict[tuple[str, str], Manifest] = {}
        self.namespaces: dict[str, Manifest] = {}

        # (method, args...) for every call
        self.calls: list[tuple[Any, ...]] = []
        # method name -> exception raised on every call until cleared
        self.errors: dict[str, Exception] = {}

        self.watch_events: list[WatchEvent] = []
        self.closed = False
        self._versions = itertools.count(1)
        self._hold_watch = asyncio.Event()

    # Helpers

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        error = self.errors.get(method)
        if error is not None:
            raise error

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == method]

    def _stamp(self, obj: Manifest) -> Manifest:
        meta = obj.setdefault("metadata", {})
        meta["resourceVersion"] = str(next(self._versions))
        meta.setdefault("creationTimestamp", CREATED_AT)
        return obj

    def add_dataset(self, manifest: Manifest) -> Manifest:
        obj = self._stamp(copy.deepcopy(manifest))
        meta = obj["metadata"]
        self.datasets[(meta["namespace"], meta["name"])] = obj
        return obj

    def add_claim(self, namespace: str, name: str, *, labels: dict[str, str] | None = None, spec: dict | None = None) -> Manifest:
        obj = self._stamp({
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
            "spec": spec or {},
        })
        self.claims[(namespace, name)] = obj
        return obj

    def add_volume(self, name: str, *, labels: dict[str, str] | None = None, spec: dict | None = None) -> Manifest:
        obj = self._stamp({
            "apiVersion": "v1",
            "kind": "PersistentVolume",
            "metadata": {"name": name, "labels": labels or {}, "uid": f"uid-{name}"},
            "spec": spec or {},
            "status": {"phase": "Bound"},
        })
        self.volumes[name] = obj
        return obj

    def add_namespace(self, name: str, labels: dict[str, str] | None = None) -> Manifest:
        obj = self._stamp({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name, "labels": labels or {}}})
        self.namespaces[name] = obj
        return obj

    def set_job_status(self, namespace: str, name: str, status: dict[str, Any]) -> None:
        self.jobs[(namespace, name)]["status"] = status

    def dataset(self, namespace: str, name: str) -> Manifest:
        return self.datasets[(namespace, name)]

    def _check_version(self, stored: Manifest, incoming: Manifest) -> None:
        expected = stored["metadata"].get("resourceVersion")
        given = (incoming.get("metadata") or {}).get("resourceVersion")
        if given and given != expected:
            raise ConflictError(f"resourceVersion {given} is stale (current {expected})")

    # Datasets

    async def get_dataset(self, namespace: str, name: str) -> Manifest:
        self._record("get_dataset", namespace, name)
        if (namespace, name) not in self.datasets:
            raise NotFoundError(f'datasets "{name}" not found')
        return copy.deepcopy(self.datasets[(namespace, name)])

    async def list_datasets(self, namespace: str | None = None) -> DatasetList:
        self._record("list_datasets", namespace)
        items = [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self.datasets.items())
            if namespace is None or ns == namespace
        ]
        return DatasetList(items=items, resource_version=str(next(self._versions)))

    async def watch_datasets(
        self,
        namespace: str | None = None,
        *,
        resource_version: str | None = None,
    ) -> AsyncIterator[WatchEvent]:
        self._record("watch_datasets", namespace, resource_version)
        events, self.watch_events = self.watch_events, []
        for event in events:
            yield event
        # Hold the stream open like a long-running watch
        await self._hold_watch.wait()

    async def update_dataset(self, dataset: Manifest) -> Manifest:
        meta = dataset["metadata"]
        key = (meta["namespace"], meta["name"])
        self._record("update_dataset", *key)
        if key not in self.datasets:
            raise NotFoundError(f'datasets "{meta["name"]}" not found')
        stored = self.datasets[key]
        self._check_version(stored, dataset)

        stored["metadata"]["finalizers"] = list(meta.get("finalizers") or [])
        self._stamp(stored)
        if stored["metadata"].get("deletionTimestamp") and not stored["metadata"]["finalizers"]:
            del self.datasets[key]
        return copy.deepcopy(stored)

    async def update_dataset_status(self, dataset: Manifest) -> Manifest:
        meta = dataset["metadata"]
        key = (meta["namespace"], meta["name"])
        self._record("update_dataset_status", *key)
        if key not in self.datasets:
            raise NotFoundError(f'datasets "{meta["name"]}" not found')
        stored = self.datasets[key]
        self._check_version(stored, dataset)

        stored["status"] = copy.deepcopy(dataset.get("status") or {})
        self._stamp(stored)
        return copy.deepcopy(stored)

    # Persistent volume claims

    async def get_claim(self, namespace: str, name: str) -> Manifest:
        self._record("get_claim", namespace, name)
        if (namespace, name) not in self.claims:
            raise NotFoundError(f'persistentvolumeclaims "{name}" not found')
        return copy.deepcopy(self.claims[(namespace, name)])

    async def create_claim(self, namespace: str, claim: Manifest) -> Manifest:
        name = claim["metadata"]["name"]
        self._record("create_claim", namespace, name)
        if (namespace, name) in self.claims:
            raise AlreadyExistsError(f'persistentvolumeclaims "{name}" already exists')
        obj = self._stamp(copy.deepcopy(claim))
        obj["metadata"]["namespace"] = namespace
        self.claims[(namespace, name)] = obj
        return copy.deepcopy(obj)

    async def update_claim(self, namespace: str, claim: Manifest) -> Manifest:
        name = claim["metadata"]["name"]
        self._record("update_claim", namespace, name)
        if (namespace, name) not in self.claims:
            raise NotFoundError(f'persistentvolumeclaims "{name}" not found')
        self._check_version(self.claims[(namespace, name)], claim)
        obj = self._stamp(copy.deepcopy(claim))
        self.claims[(namespace, name)] = obj
        return copy.deepcopy(obj)

    async def delete_claim(self, namespace: str, name: str) -> None:
        self._record("delete_claim", namespace, name)
        if self.claims.pop((namespace, name), None) is None:
            raise NotFoundError(f'persistentvolumeclaims "{name}" not found')

    # Persistent volumes

    async def get_volume(self, name: str) -> Manifest:
        self._record("get_volume", name)
        if name not in self.volumes:
            raise NotFoundError(f'persistentvolumes "{name}" not found')
        return copy.deepcopy(self.volumes[name])

    async def create_volume(self, volume: Manifest) -> Manifest:
        name = volume["metadata"]["name"]
        self._record("create_volume", name)
        if name in self.volumes:
            raise AlreadyExistsError(f'persistentvolumes "{name}" already exists')
        obj = self._stamp(copy.deepcopy(volume))
        self.volumes[name] = obj
        return copy.deepcopy(obj)

    async def delete_volume(self, name: str) -> None:
        self._record("delete_volume", name)
        if self.volumes.pop(name, None) is None:
            raise NotFoundError(f'persistentvolumes "{name}" not found')

    # Config maps

    async def get_config_map(self, namespace: str, name: str) -> Manifest:
        self._record("get_config_map", namespace, name)
        if (namespace, name) not in self.config_maps:
            raise NotFoundError(f'configmaps "{name}" not found')
        return copy.deepcopy(self.config_maps[(namespace, name)])

    async def create_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        name = config_map["metadata"]["name"]
        self._record("create_config_map", namespace, name)
        if (namespace, name) in self.config_maps:
            raise AlreadyExistsError(f'configmaps "{name}" already exists')
        obj = self._stamp(copy.deepcopy(config_map))
        self.config_maps[(namespace, name)] = obj
        return copy.deepcopy(obj)

    async def update_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        name = config_map["metadata"]["name"]
        self._record("update_config_map", namespace, name)
        if (namespace, name) not in self.config_maps:
            raise NotFoundError(f'configmaps "{name}" not found')
        obj = self._stamp(copy.deepcopy(config_map))
        self.config_maps[(namespace, name)] = obj
        return copy.deepcopy(obj)

    # Jobs

    async def get_job(self, namespace: str, name: str) -> Manifest:
        self._record("get_job", namespace, name)
        if (namespace, name) not in self.jobs:
            raise NotFoundError(f'jobs.batch "{name}" not found')
        return copy.deepcopy(self.jobs[(namespace, name)])

    async def create_job(self, namespace: str, job: Manifest) -> Manifest:
        name = job["metadata"]["name"]
        self._record("create_job", namespace, name)
        if (namespace, name) in self.jobs:
            raise AlreadyExistsError(f'jobs.batch "{name}" already exists')
        obj = self._stamp(copy.deepcopy(job))
        obj.setdefault("status", {})
        self.jobs[(namespace, name)] = obj
        return copy.deepcopy(obj)

    async def list_jobs(self, namespace: str, *, labels: dict[str, str]) -> list[Manifest]:
        self._record("list_jobs", namespace, labels)
        result = []
        for (ns, _), job in sorted(self.jobs.items()):
            job_labels = job["metadata"].get("labels") or {}
            if ns == namespace and all(job_labels.get(k) == v for k, v in labels.items()):
                result.append(copy.deepcopy(job))
        return result

    async def delete_job(self, namespace: str, name: str) -> None:
        self._record("delete_job", namespace, name)
        if self.jobs.pop((namespace, name), None) is None:
            raise NotFoundError(f'jobs.batch "{name}" not found')

    # Namespaces

    async def get_namespace(self, name: str) -> Manifest:
        self._record("get_namespace", name)
        if name not in self.namespaces:
            raise NotFoundError(f'namespaces "{name}" not found')
        return copy.deepcopy(self.namespaces[name])

    async def close(self) -> None:
        self.closed = True
        self._hold_watch.set()
