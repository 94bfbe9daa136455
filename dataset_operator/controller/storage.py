"""Storage binder.

Provisions or adopts the claim backing a Dataset. Source types that need a
volume of their own (REFERENCE clones, NFS shares) or that adopt an existing
claim (PVC) get a dedicated binding strategy; every other type provisions a
claim from the Dataset's ``volumeClaimTemplate``.

Strategies are picked from a dispatch table keyed by source type. After a
strategy has bound its volume, the shared claim step creates the claim (or
checks the ownership label on an existing one). On deletion the strategy
unbinds first and decides whether the shared claim deletion runs.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from dataset_operator.controller.naming import volume_name
from dataset_operator.controller.steps import (
    ReconcileStep,
    fetch_source_dataset,
    is_force_delete,
)
from dataset_operator.errors import (
    DependencyNotReadyError,
    NotFoundError,
    OwnershipConflictError,
    StoreError,
)
from dataset_operator.models import Dataset, DatasetType
from dataset_operator.models.source import parse_claim_uri, parse_share_uri
from dataset_operator.utils.kube import child_metadata, is_zero_quantity, labels_of, owner_reference

if TYPE_CHECKING:
    from dataset_operator.config import ControllerConfig, KubeConfig
    from dataset_operator.store import Manifest, ObjectStore

logger = structlog.get_logger()

DEFAULT_ACCESS_MODE = "ReadWriteMany"
DEFAULT_VOLUME_MODE = "Filesystem"
DEFAULT_STORAGE_REQUEST = "100Ti"

NFS_VOLUME_TEMPLATE: dict[str, Any] = yaml.safe_load(
    """
apiVersion: v1
kind: PersistentVolume
metadata:
  annotations:
    pv.kubernetes.io/provisioned-by: nfs.csi.k8s.io
spec:
  capacity:
    storage: 100Ti
  accessModes:
    - ReadWriteMany
  persistentVolumeReclaimPolicy: Retain
  storageClassName: nfs-csi
  mountOptions:
    - nfsvers=4.1
  csi:
    driver: nfs.csi.k8s.io
"""
)

# Server-populated metadata dropped when cloning a volume
_CLONE_DROPPED_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "managedFields",
    "selfLink",
    "generation",
    "finalizers",
)


@dataclass
class ClaimPlan:
    """How the shared claim step should shape the Dataset's claim.

    Attributes:
        spec: Full claim spec to use instead of the template
        volume_name: Volume the claim must bind to
        storage_class: Storage class forced onto a template-built spec
    """

    spec: dict[str, Any] | None = None
    volume_name: str | None = None
    storage_class: str | None = None


class StorageBinding(ABC):
    """Per-source-type volume binding strategy."""

    def __init__(
        self,
        store: "ObjectStore",
        config: "ControllerConfig",
        kube: "KubeConfig",
    ) -> None:
        self._store = store
        self._config = config
        self._kube = kube
        self._log = logger.bind(binding=type(self).__name__)

    @property
    def label_key(self) -> str:
        return self._config.dataset_label

    def claim_name(self, dataset: Dataset) -> str:
        return dataset.claim_name()

    @abstractmethod
    async def bind(self, dataset: Dataset) -> ClaimPlan | None:
        """Prepare the volume side.

        Returns:
            A plan for the shared claim step, or None when the binding
            already settled the claim itself.
        """
        ...

    @abstractmethod
    async def unbind(self, dataset: Dataset) -> bool:
        """Release the volume side on deletion.

        Returns:
            Whether the shared claim step should delete the claim.
        """
        ...


class TemplateBinding(StorageBinding):
    """Claim provisioned from the Dataset's own template."""

    async def bind(self, dataset: Dataset) -> ClaimPlan | None:
        return ClaimPlan()

    async def unbind(self, dataset: Dataset) -> bool:
        return True


class ReferenceBinding(StorageBinding):
    """Read-only view of another Dataset through a cloned volume.

    The clone is owned by the referencing Dataset, so deleting the reference
    never touches the source's volume. Garbage collection through owner
    references removes the clone and claim.
    """

    async def bind(self, dataset: Dataset) -> ClaimPlan | None:
        source = await fetch_source_dataset(self._store, dataset)
        src_ns = source.metadata.namespace
        src_claim_name = source.status.pvc_name
        if not src_claim_name:
            raise DependencyNotReadyError(
                f"source dataset {src_ns}/{source.metadata.name} has no pvc"
            )

        try:
            src_claim = await self._store.get_claim(src_ns, src_claim_name)
        except StoreError as e:
            raise DependencyNotReadyError(
                f"get pvc {src_ns}/{src_claim_name} for source dataset "
                f"{src_ns}/{source.metadata.name} error: {e}"
            ) from e

        src_volume_name = (src_claim.get("spec") or {}).get("volumeName")
        if not src_volume_name:
            raise DependencyNotReadyError(f"pvc {src_ns}/{src_claim_name} has no volume")

        try:
            src_volume = await self._store.get_volume(src_volume_name)
        except StoreError as e:
            raise DependencyNotReadyError(
                f"get pv {src_volume_name} for source dataset "
                f"{src_ns}/{source.metadata.name} error: {e}"
            ) from e

        clone = self._clone_volume(dataset, src_volume)
        clone_name = clone["metadata"]["name"]
        try:
            await self._store.get_volume(clone_name)
        except NotFoundError:
            await self._store.create_volume(clone)
            self._log.info("storage.volume.cloned", dataset=dataset.key, source=src_volume_name, volume=clone_name)

        spec = copy.deepcopy(src_claim.get("spec") or {})
        spec["volumeName"] = clone_name

        dataset.status.last_succeed_round = dataset.spec.data_sync_round
        dataset.status.read_only = True
        return ClaimPlan(spec=spec, volume_name=clone_name)

    async def unbind(self, dataset: Dataset) -> bool:
        return False

    def _clone_volume(self, dataset: Dataset, volume: "Manifest") -> "Manifest":
        clone = copy.deepcopy(volume)
        clone.pop("status", None)

        meta = clone.setdefault("metadata", {})
        for key in _CLONE_DROPPED_METADATA:
            meta.pop(key, None)
        meta["name"] = volume_name(dataset.metadata.namespace, dataset.metadata.name)
        meta["ownerReferences"] = [owner_reference(dataset, self._kube.api_version, self._kube.kind)]
        labels = dict(meta.get("labels") or {})
        labels[self.label_key] = dataset.metadata.name
        meta["labels"] = labels

        spec = clone.setdefault("spec", {})
        spec.pop("claimRef", None)
        spec["persistentVolumeReclaimPolicy"] = "Retain"
        return clone


class AdoptedClaimBinding(StorageBinding):
    """A pre-existing claim named by ``pvc://<name>/<path>``.

    The claim is never created or deleted, only labeled for this Dataset.
    """

    def claim_name(self, dataset: Dataset) -> str:
        return parse_claim_uri(dataset.spec.source.uri)

    async def bind(self, dataset: Dataset) -> ClaimPlan | None:
        name = self.claim_name(dataset)
        namespace = dataset.metadata.namespace

        claim = await self._store.get_claim(namespace, name)
        labels = dict(labels_of(claim))
        if self.label_key in labels and labels[self.label_key] != dataset.metadata.name:
            raise OwnershipConflictError(
                f"pvc {name} does not belong to dataset {dataset.key}",
                details={"owner": labels[self.label_key]},
            )
        if self.label_key not in labels:
            labels[self.label_key] = dataset.metadata.name
            claim.setdefault("metadata", {})["labels"] = labels
            await self._store.update_claim(namespace, claim)
            self._log.info("storage.claim.adopted", dataset=dataset.key, claim=name)

        dataset.status.pvc_name = name
        return None

    async def unbind(self, dataset: Dataset) -> bool:
        name = self.claim_name(dataset)
        namespace = dataset.metadata.namespace
        try:
            claim = await self._store.get_claim(namespace, name)
        except StoreError as e:
            self._log.info("storage.claim.release_skipped", dataset=dataset.key, claim=name, error=str(e))
            return False

        labels = dict(labels_of(claim))
        if labels.get(self.label_key) != dataset.metadata.name:
            return False
        del labels[self.label_key]
        claim.setdefault("metadata", {})["labels"] = labels
        try:
            await self._store.update_claim(namespace, claim)
        except StoreError as e:
            self._log.error(
                "storage.claim.release_failed",
                dataset=dataset.key,
                claim=name,
                error=str(e),
            )
        else:
            self._log.info("storage.claim.released", dataset=dataset.key, claim=name)
        return False


class ShareBinding(StorageBinding):
    """Network filesystem export served through the NFS CSI driver."""

    def volume_name(self, dataset: Dataset) -> str:
        return volume_name(dataset.metadata.namespace, self.claim_name(dataset))

    async def bind(self, dataset: Dataset) -> ClaimPlan | None:
        location = parse_share_uri(dataset.spec.source.uri)
        pv_name = self.volume_name(dataset)
        storage_class = NFS_VOLUME_TEMPLATE["spec"]["storageClassName"]

        try:
            existing = await self._store.get_volume(pv_name)
        except NotFoundError:
            existing = None

        if existing is not None:
            if labels_of(existing).get(self.label_key) != dataset.metadata.name:
                raise OwnershipConflictError(f"pv {pv_name} does not belong to dataset {dataset.key}")
        else:
            volume = self._build_volume(dataset, pv_name, location.host, location.path)
            await self._store.create_volume(volume)
            self._log.info("storage.volume.created", dataset=dataset.key, volume=pv_name, server=location.host)

        dataset.status.last_succeed_round = dataset.spec.data_sync_round
        return ClaimPlan(volume_name=pv_name, storage_class=storage_class)

    async def unbind(self, dataset: Dataset) -> bool:
        pv_name = self.volume_name(dataset)
        try:
            await self._store.delete_volume(pv_name)
        except NotFoundError:
            pass
        except Exception as e:
            if not is_force_delete(dataset, self._config.force_delete_grace_seconds):
                raise
            self._log.error(
                "storage.volume.delete_forced",
                dataset=dataset.key,
                volume=pv_name,
                error=str(e),
            )
        return True

    def _build_volume(self, dataset: Dataset, pv_name: str, host: str, path: str) -> "Manifest":
        volume = copy.deepcopy(NFS_VOLUME_TEMPLATE)
        meta = volume["metadata"]
        meta["name"] = pv_name
        meta["labels"] = {self.label_key: dataset.metadata.name}
        meta["ownerReferences"] = [owner_reference(dataset, self._kube.api_version, self._kube.kind)]

        csi = volume["spec"].setdefault("csi", {})
        attrs = csi.setdefault("volumeAttributes", {})
        attrs["server"] = host
        attrs["share"] = "/"
        attrs["subdir"] = path
        attrs["onDelete"] = "retain"
        attrs["csi.storage.k8s.io/pv/name"] = pv_name
        attrs["csi.storage.k8s.io/pvc/name"] = self.claim_name(dataset)
        attrs["csi.storage.k8s.io/pvc/namespace"] = dataset.metadata.namespace
        if not attrs.get("mountPermissions"):
            attrs["mountPermissions"] = dataset.spec.mount_options.mode
        csi["volumeHandle"] = f"{host}#{path}#{pv_name}#"
        return volume


BINDINGS: dict[DatasetType, type[StorageBinding]] = {
    DatasetType.REFERENCE: ReferenceBinding,
    DatasetType.PVC: AdoptedClaimBinding,
    DatasetType.NFS: ShareBinding,
}


class StorageBinder(ReconcileStep):
    """Bind the Dataset's claim, or release it on deletion."""

    condition_type = "PVC"

    def __init__(
        self,
        store: "ObjectStore",
        config: "ControllerConfig",
        kube: "KubeConfig",
    ) -> None:
        super().__init__(store, config, kube)
        self._default = TemplateBinding(store, config, kube)
        self._bindings = {
            source_type: cls(store, config, kube) for source_type, cls in BINDINGS.items()
        }

    def binding_for(self, dataset: Dataset) -> StorageBinding:
        return self._bindings.get(dataset.source_type, self._default)

    async def run(self, dataset: Dataset) -> None:
        binding = self.binding_for(dataset)
        claim_name = binding.claim_name(dataset)

        if dataset.is_deleted:
            if await binding.unbind(dataset):
                await self._delete_claim(dataset, claim_name)
            return

        plan = await binding.bind(dataset)
        if plan is None:
            return
        await self._ensure_claim(dataset, claim_name, plan)

    async def _delete_claim(self, dataset: Dataset, name: str) -> None:
        namespace = dataset.metadata.namespace
        try:
            await self._store.delete_claim(namespace, name)
        except NotFoundError:
            return
        except Exception as e:
            if not self.force_delete(dataset):
                raise
            self._log.error(
                "storage.claim.delete_forced",
                dataset=dataset.key,
                claim=name,
                error=str(e),
            )

    async def _ensure_claim(self, dataset: Dataset, name: str, plan: ClaimPlan) -> None:
        namespace = dataset.metadata.namespace
        # Recorded before creation so later steps can reference the claim
        dataset.status.pvc_name = name

        try:
            existing = await self._store.get_claim(namespace, name)
        except NotFoundError:
            existing = None

        if existing is not None:
            if labels_of(existing).get(self.label_key) != dataset.metadata.name:
                raise OwnershipConflictError(
                    f"pvc {name} already exists, but does not belong to dataset {dataset.metadata.name}"
                )
            return

        spec = plan.spec if plan.spec is not None else self._template_spec(dataset, plan.storage_class)
        if plan.volume_name:
            spec["volumeName"] = plan.volume_name

        claim = {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": child_metadata(
                dataset,
                name,
                label_key=self.label_key,
                api_version=self._kube.api_version,
                namespace=namespace,
            ),
            "spec": spec,
        }
        await self._store.create_claim(namespace, claim)
        self._log.info("storage.claim.created", dataset=dataset.key, claim=name)

    @staticmethod
    def _template_spec(dataset: Dataset, storage_class: str | None) -> dict[str, Any]:
        spec = copy.deepcopy(dataset.spec.volume_claim_template.spec)
        if not spec.get("accessModes"):
            spec["accessModes"] = [DEFAULT_ACCESS_MODE]
        if not spec.get("volumeMode"):
            spec["volumeMode"] = DEFAULT_VOLUME_MODE
        resources = spec.get("resources") or {}
        requests = dict(resources.get("requests") or {})
        if is_zero_quantity(requests.get("storage")):
            requests["storage"] = DEFAULT_STORAGE_REQUEST
        resources["requests"] = requests
        spec["resources"] = resources
        if storage_class:
            spec["storageClassName"] = storage_class
        return spec
