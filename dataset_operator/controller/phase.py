"""Phase deriver."""

from __future__ import annotations

from dataset_operator.controller.conditions import any_false
from dataset_operator.models import Dataset, DatasetPhase, DatasetType


def derive_phase(dataset: Dataset) -> DatasetPhase:
    """Compute the lifecycle phase from conditions and round state."""
    status = dataset.status
    source_type = dataset.source_type
    desired = dataset.spec.data_sync_round

    if source_type is DatasetType.REFERENCE and any_false(status.conditions):
        return DatasetPhase.FAILED

    if source_type is DatasetType.PVC:
        return DatasetPhase.READY
    if status.in_processing:
        return DatasetPhase.PROCESSING
    if status.last_succeed_round != desired:
        return DatasetPhase.FAILED
    if status.last_succeed_round == desired:
        return DatasetPhase.READY
    # Unreachable while rounds are plain integers; kept as the fallback
    return DatasetPhase.PENDING
