"""Dataset data model.

A Dataset describes a data source that is materialized onto a persistent
volume and kept in sync across explicit rounds.

Models mirror the custom resource's camelCase wire format through aliases.
The raw object is kept alongside the parsed model so fields this operator
does not know about survive a round-trip back to the API server.
"""

from __future__ import annotations

import copy
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel


class DatasetType(str, Enum):
    """Kinds of data source a Dataset can describe."""

    GIT = "GIT"
    S3 = "S3"
    HTTP = "HTTP"
    PVC = "PVC"
    NFS = "NFS"
    CONDA = "CONDA"
    REFERENCE = "REFERENCE"
    HUGGING_FACE = "HUGGING_FACE"
    MODEL_SCOPE = "MODEL_SCOPE"

    @property
    def supports_preload(self) -> bool:
        """Whether data for this type is copied in by a sync job."""
        return self in _PRELOAD_TYPES


_PRELOAD_TYPES = frozenset(
    {
        DatasetType.GIT,
        DatasetType.S3,
        DatasetType.HTTP,
        DatasetType.CONDA,
        DatasetType.HUGGING_FACE,
        DatasetType.MODEL_SCOPE,
    }
)


class DatasetPhase(str, Enum):
    """Coarse lifecycle state derived from conditions and round state."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ObjectMeta(_WireModel):
    """The subset of Kubernetes object metadata the controller reads."""

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None


class DatasetSource(_WireModel):
    """Where the data comes from. ``type`` and ``uri`` are immutable."""

    type: DatasetType
    uri: str
    options: dict[str, str] = Field(default_factory=dict)


class MountOptions(_WireModel):
    """Ownership and permissions applied to the synced directory."""

    path: str = "/"
    mode: str = "0774"
    uid: int = 1000
    gid: int = 1000


class ClaimTemplateMeta(_WireModel):
    name: str | None = None


class VolumeClaimTemplate(_WireModel):
    """Template for the claim a Dataset provisions for itself.

    ``spec`` is kept as a raw claim spec so storage class, selectors and
    data sources pass through untouched.
    """

    metadata: ClaimTemplateMeta = Field(default_factory=ClaimTemplateMeta)
    spec: dict[str, Any] = Field(default_factory=dict)


class DatasetSpec(_WireModel):
    """Desired state, user-writable."""

    share: bool = False
    share_to_namespace_selector: dict[str, Any] | None = None
    source: DatasetSource
    secret_ref: str | None = None
    mount_options: MountOptions = Field(default_factory=MountOptions)
    data_sync_round: int = 0
    volume_claim_template: VolumeClaimTemplate = Field(default_factory=VolumeClaimTemplate)


class Condition(_WireModel):
    """Named health indicator (metav1.Condition layout)."""

    type: str
    status: str = "Unknown"  # True | False | Unknown
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


class SyncRoundStatus(_WireModel):
    """Outcome of one data sync round."""

    round: int
    job_name: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    succeed: bool = False


class DatasetStatus(_WireModel):
    """Observed state, written only by the controller."""

    phase: DatasetPhase | None = None
    conditions: list[Condition] = Field(default_factory=list)
    in_processing: bool = False
    in_processing_round: int = 0
    last_succeed_round: int = 0
    sync_round_statuses: list[SyncRoundStatus] = Field(default_factory=list)
    pvc_name: str | None = None
    read_only: bool = False
    last_sync_time: datetime | None = None


class Dataset(_WireModel):
    """Dataset custom resource."""

    metadata: ObjectMeta
    spec: DatasetSpec
    status: DatasetStatus = Field(default_factory=DatasetStatus)

    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "Dataset":
        """Parse a Dataset from its API representation."""
        dataset = cls.model_validate({k: v for k, v in obj.items() if v is not None})
        dataset._raw = copy.deepcopy(obj)
        return dataset

    def to_object(self) -> dict[str, Any]:
        """Render the API representation for an update.

        Starts from the object as loaded and overlays the fields the
        controller owns: finalizers, resourceVersion and status.
        """
        obj = copy.deepcopy(self._raw)
        metadata = obj.setdefault("metadata", {})
        metadata["name"] = self.metadata.name
        metadata["namespace"] = self.metadata.namespace
        metadata["finalizers"] = list(self.metadata.finalizers)
        if self.metadata.resource_version is not None:
            metadata["resourceVersion"] = self.metadata.resource_version
        obj["status"] = self.status.model_dump(mode="json", by_alias=True, exclude_none=True)
        return obj

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def source_type(self) -> DatasetType:
        return self.spec.source.type

    @property
    def is_deleted(self) -> bool:
        """Whether deletion has been requested (tombstone timestamp set)."""
        return self.metadata.deletion_timestamp is not None

    def claim_name(self) -> str:
        """Claim name for Datasets that provision their own claim."""
        return self.spec.volume_claim_template.metadata.name or self.metadata.name
