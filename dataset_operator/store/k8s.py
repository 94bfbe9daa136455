"""Kubernetes object store implementation using kubernetes-asyncio.

Responses are converted to plain manifests with
``ApiClient.sanitize_for_serialization`` so the controller handles built-in
kinds and the Dataset custom resource the same way.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client import ApiClient, ApiException

from dataset_operator.config import get_settings
from dataset_operator.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from dataset_operator.store.base import DatasetList, Manifest, ObjectStore, WatchEvent

if TYPE_CHECKING:
    from dataset_operator.config import KubeConfig

logger = structlog.get_logger()


def _api_message(e: ApiException) -> str:
    """Extract the Status message the API server put in the body."""
    try:
        body = json.loads(e.body) if e.body else {}
    except (TypeError, ValueError):
        body = {}
    return body.get("message") or e.reason or f"HTTP {e.status}"


def _api_reason(e: ApiException) -> str:
    try:
        body = json.loads(e.body) if e.body else {}
    except (TypeError, ValueError):
        body = {}
    return body.get("reason") or ""


def translate_api_exception(e: ApiException, what: str) -> StoreError:
    """Map an ApiException onto the store error hierarchy."""
    message = _api_message(e)
    details = {"object": what, "status": e.status}
    if e.status == 404:
        return NotFoundError(message or f"{what} not found", details, status=404)
    if e.status == 409:
        if _api_reason(e) == "AlreadyExists":
            return AlreadyExistsError(message, details, status=409)
        return ConflictError(message, details, status=409)
    return StoreError(f"{what}: {message}", details, status=e.status)


@contextmanager
def _translate_errors(what: str) -> Iterator[None]:
    try:
        yield
    except ApiException as e:
        raise translate_api_exception(e, what) from e


class K8sObjectStore(ObjectStore):
    """Object store backed by the Kubernetes API server."""

    def __init__(self, kube_config: "KubeConfig | None" = None) -> None:
        cfg = kube_config or get_settings().kube

        self._kubeconfig = cfg.kubeconfig
        self._group = cfg.group
        self._version = cfg.version
        self._plural = cfg.plural

        self._log = logger.bind(store="k8s")
        self._api_client: ApiClient | None = None
        self._config_loaded = False

    async def _ensure_config(self) -> None:
        """Load Kubernetes configuration once."""
        if self._config_loaded:
            return

        if self._kubeconfig:
            await config.load_kube_config(config_file=self._kubeconfig)
            self._log.info("k8s.config.loaded", source="kubeconfig", path=self._kubeconfig)
        else:
            config.load_incluster_config()
            self._log.info("k8s.config.loaded", source="incluster")

        self._config_loaded = True

    async def _get_api_client(self) -> ApiClient:
        """Get or create the API client."""
        await self._ensure_config()
        if self._api_client is None:
            self._api_client = ApiClient()
        return self._api_client

    async def close(self) -> None:
        """Close the API client."""
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None

    def _to_manifest(self, api_client: ApiClient, obj: Any) -> Manifest:
        return api_client.sanitize_for_serialization(obj)

    async def _custom(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self._get_api_client())

    async def _core(self) -> client.CoreV1Api:
        return client.CoreV1Api(await self._get_api_client())

    async def _batch(self) -> client.BatchV1Api:
        return client.BatchV1Api(await self._get_api_client())

    # Datasets

    async def get_dataset(self, namespace: str, name: str) -> Manifest:
        api = await self._custom()
        with _translate_errors(f"dataset {namespace}/{name}"):
            return await api.get_namespaced_custom_object(
                group=self._group,
                version=self._version,
                namespace=namespace,
                plural=self._plural,
                name=name,
            )

    async def list_datasets(self, namespace: str | None = None) -> DatasetList:
        api = await self._custom()
        with _translate_errors("datasets"):
            if namespace:
                result = await api.list_namespaced_custom_object(
                    group=self._group,
                    version=self._version,
                    namespace=namespace,
                    plural=self._plural,
                )
            else:
                result = await api.list_cluster_custom_object(
                    group=self._group,
                    version=self._version,
                    plural=self._plural,
                )
        return DatasetList(
            items=result.get("items", []),
            resource_version=result.get("metadata", {}).get("resourceVersion"),
        )

    async def watch_datasets(
        self,
        namespace: str | None = None,
        *,
        resource_version: str | None = None,
    ) -> AsyncIterator[WatchEvent]:
        api = await self._custom()
        kwargs: dict[str, Any] = {
            "group": self._group,
            "version": self._version,
            "plural": self._plural,
        }
        if namespace:
            func = api.list_namespaced_custom_object
            kwargs["namespace"] = namespace
        else:
            func = api.list_cluster_custom_object
        if resource_version:
            kwargs["resource_version"] = resource_version

        w = watch.Watch()
        try:
            with _translate_errors("datasets watch"):
                async for event in w.stream(func, **kwargs):
                    event_type = event.get("type", "")
                    obj = event.get("raw_object") or event.get("object") or {}
                    if event_type == "ERROR":
                        # Usually 410 Gone: the caller re-lists
                        self._log.info("k8s.watch.error_event", status=obj.get("code"))
                        return
                    yield WatchEvent(type=event_type, object=obj)
        finally:
            w.stop()

    async def update_dataset(self, dataset: Manifest) -> Manifest:
        api = await self._custom()
        meta = dataset["metadata"]
        with _translate_errors(f"dataset {meta['namespace']}/{meta['name']}"):
            return await api.replace_namespaced_custom_object(
                group=self._group,
                version=self._version,
                namespace=meta["namespace"],
                plural=self._plural,
                name=meta["name"],
                body=dataset,
            )

    async def update_dataset_status(self, dataset: Manifest) -> Manifest:
        api = await self._custom()
        meta = dataset["metadata"]
        with _translate_errors(f"dataset {meta['namespace']}/{meta['name']} status"):
            return await api.replace_namespaced_custom_object_status(
                group=self._group,
                version=self._version,
                namespace=meta["namespace"],
                plural=self._plural,
                name=meta["name"],
                body=dataset,
            )

    # Persistent volume claims

    async def get_claim(self, namespace: str, name: str) -> Manifest:
        v1 = await self._core()
        with _translate_errors(f"pvc {namespace}/{name}"):
            pvc = await v1.read_namespaced_persistent_volume_claim(name=name, namespace=namespace)
        return self._to_manifest(v1.api_client, pvc)

    async def create_claim(self, namespace: str, claim: Manifest) -> Manifest:
        v1 = await self._core()
        name = claim["metadata"]["name"]
        self._log.info("k8s.create_claim", namespace=namespace, name=name)
        with _translate_errors(f"pvc {namespace}/{name}"):
            pvc = await v1.create_namespaced_persistent_volume_claim(namespace=namespace, body=claim)
        return self._to_manifest(v1.api_client, pvc)

    async def update_claim(self, namespace: str, claim: Manifest) -> Manifest:
        v1 = await self._core()
        name = claim["metadata"]["name"]
        with _translate_errors(f"pvc {namespace}/{name}"):
            pvc = await v1.replace_namespaced_persistent_volume_claim(
                name=name, namespace=namespace, body=claim
            )
        return self._to_manifest(v1.api_client, pvc)

    async def delete_claim(self, namespace: str, name: str) -> None:
        v1 = await self._core()
        self._log.info("k8s.delete_claim", namespace=namespace, name=name)
        with _translate_errors(f"pvc {namespace}/{name}"):
            await v1.delete_namespaced_persistent_volume_claim(name=name, namespace=namespace)

    # Persistent volumes

    async def get_volume(self, name: str) -> Manifest:
        v1 = await self._core()
        with _translate_errors(f"pv {name}"):
            pv = await v1.read_persistent_volume(name=name)
        return self._to_manifest(v1.api_client, pv)

    async def create_volume(self, volume: Manifest) -> Manifest:
        v1 = await self._core()
        name = volume["metadata"]["name"]
        self._log.info("k8s.create_volume", name=name)
        with _translate_errors(f"pv {name}"):
            pv = await v1.create_persistent_volume(body=volume)
        return self._to_manifest(v1.api_client, pv)

    async def delete_volume(self, name: str) -> None:
        v1 = await self._core()
        self._log.info("k8s.delete_volume", name=name)
        with _translate_errors(f"pv {name}"):
            await v1.delete_persistent_volume(name=name)

    # Config maps

    async def get_config_map(self, namespace: str, name: str) -> Manifest:
        v1 = await self._core()
        with _translate_errors(f"configmap {namespace}/{name}"):
            cm = await v1.read_namespaced_config_map(name=name, namespace=namespace)
        return self._to_manifest(v1.api_client, cm)

    async def create_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        v1 = await self._core()
        name = config_map["metadata"]["name"]
        with _translate_errors(f"configmap {namespace}/{name}"):
            cm = await v1.create_namespaced_config_map(namespace=namespace, body=config_map)
        return self._to_manifest(v1.api_client, cm)

    async def update_config_map(self, namespace: str, config_map: Manifest) -> Manifest:
        v1 = await self._core()
        name = config_map["metadata"]["name"]
        with _translate_errors(f"configmap {namespace}/{name}"):
            cm = await v1.replace_namespaced_config_map(
                name=name, namespace=namespace, body=config_map
            )
        return self._to_manifest(v1.api_client, cm)

    # Jobs

    async def get_job(self, namespace: str, name: str) -> Manifest:
        batch = await self._batch()
        with _translate_errors(f"job {namespace}/{name}"):
            job = await batch.read_namespaced_job(name=name, namespace=namespace)
        return self._to_manifest(batch.api_client, job)

    async def create_job(self, namespace: str, job: Manifest) -> Manifest:
        batch = await self._batch()
        name = job["metadata"]["name"]
        self._log.info("k8s.create_job", namespace=namespace, name=name)
        with _translate_errors(f"job {namespace}/{name}"):
            created = await batch.create_namespaced_job(namespace=namespace, body=job)
        return self._to_manifest(batch.api_client, created)

    async def list_jobs(self, namespace: str, *, labels: dict[str, str]) -> list[Manifest]:
        batch = await self._batch()
        # key1=value1,key2 (empty value selects on presence)
        label_selector = ",".join(
            f"{k}={v}" if v else k for k, v in sorted(labels.items())
        )
        with _translate_errors(f"jobs in {namespace}"):
            job_list = await batch.list_namespaced_job(
                namespace=namespace, label_selector=label_selector
            )
        return [self._to_manifest(batch.api_client, job) for job in job_list.items]

    async def delete_job(self, namespace: str, name: str) -> None:
        batch = await self._batch()
        self._log.info("k8s.delete_job", namespace=namespace, name=name)
        with _translate_errors(f"job {namespace}/{name}"):
            await batch.delete_namespaced_job(
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )

    # Namespaces

    async def get_namespace(self, name: str) -> Manifest:
        v1 = await self._core()
        with _translate_errors(f"namespace {name}"):
            ns = await v1.read_namespace(name=name)
        return self._to_manifest(v1.api_client, ns)
