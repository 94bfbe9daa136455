"""Data models."""

from dataset_operator.models.dataset import (
    Condition,
    Dataset,
    DatasetPhase,
    DatasetSource,
    DatasetSpec,
    DatasetStatus,
    DatasetType,
    MountOptions,
    ObjectMeta,
    SyncRoundStatus,
    VolumeClaimTemplate,
)

__all__ = [
    "Condition",
    "Dataset",
    "DatasetPhase",
    "DatasetSource",
    "DatasetSpec",
    "DatasetStatus",
    "DatasetType",
    "MountOptions",
    "ObjectMeta",
    "SyncRoundStatus",
    "VolumeClaimTemplate",
]
