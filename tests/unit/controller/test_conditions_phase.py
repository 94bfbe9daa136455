"""Unit tests for the condition ledger and the phase deriver."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dataset_operator.controller.conditions import any_false, set_condition
from dataset_operator.controller.phase import derive_phase
from dataset_operator.models import Condition, Dataset, DatasetPhase
from tests.fakes import make_dataset


class TestSetCondition:
    def test_empty_type_is_ignored(self):
        conditions: list[Condition] = []
        set_condition(conditions, None, None)
        set_condition(conditions, "", RuntimeError("boom"))
        assert conditions == []

    def test_success_appends_true_condition(self):
        conditions = set_condition([], "PVC", None)

        assert len(conditions) == 1
        c = conditions[0]
        assert c.type == "PVC"
        assert c.status == "True"
        assert c.reason == "PVCReady"
        assert c.message == ""
        assert c.last_transition_time is not None

    def test_failure_records_message(self):
        conditions = set_condition([], "Job", RuntimeError("quota exceeded"))
        assert conditions[0].status == "False"
        assert conditions[0].message == "quota exceeded"

    def test_same_status_keeps_transition_time_and_message(self):
        old = datetime(2020, 1, 1, tzinfo=UTC)
        conditions = [
            Condition(type="Job", status="False", reason="JobReady", message="first", last_transition_time=old)
        ]

        set_condition(conditions, "Job", RuntimeError("second"))

        assert conditions[0].message == "first"
        assert conditions[0].last_transition_time == old

    def test_transition_updates_entry_in_place(self):
        old = datetime(2020, 1, 1, tzinfo=UTC)
        conditions = [
            Condition(type="Job", status="False", reason="JobReady", message="failed", last_transition_time=old),
            Condition(type="PVC", status="True", reason="PVCReady"),
        ]

        set_condition(conditions, "Job", None)

        assert [c.type for c in conditions] == ["Job", "PVC"]
        assert conditions[0].status == "True"
        assert conditions[0].message == ""
        assert conditions[0].last_transition_time > old

    def test_any_false(self):
        assert not any_false([Condition(type="A", status="True")])
        assert any_false([Condition(type="A", status="True"), Condition(type="B", status="False")])


def _dataset(source_type: str = "S3", data_sync_round: int = 1, **status) -> Dataset:
    return Dataset.from_object(
        make_dataset(source_type=source_type, data_sync_round=data_sync_round, status=status)
    )


class TestDerivePhase:
    def test_processing(self):
        ds = _dataset(inProcessing=True, inProcessingRound=1)
        assert derive_phase(ds) is DatasetPhase.PROCESSING

    def test_ready_when_rounds_match(self):
        ds = _dataset(data_sync_round=2, lastSucceedRound=2)
        assert derive_phase(ds) is DatasetPhase.READY

    def test_failed_when_rounds_differ(self):
        ds = _dataset(data_sync_round=2, lastSucceedRound=1)
        assert derive_phase(ds) is DatasetPhase.FAILED

    def test_failed_when_last_round_is_ahead(self):
        ds = _dataset(data_sync_round=1, lastSucceedRound=3)
        assert derive_phase(ds) is DatasetPhase.FAILED

    def test_adopted_claim_is_always_ready(self):
        ds = _dataset(
            source_type="PVC",
            data_sync_round=4,
            inProcessing=True,
            conditions=[{"type": "PVC", "status": "False"}],
        )
        assert derive_phase(ds) is DatasetPhase.READY

    def test_reference_with_false_condition_fails(self):
        ds = _dataset(
            source_type="REFERENCE",
            lastSucceedRound=1,
            conditions=[{"type": "Config", "status": "False", "message": "not shared"}],
        )
        assert derive_phase(ds) is DatasetPhase.FAILED

    @pytest.mark.parametrize("source_type", ["S3", "NFS", "GIT"])
    def test_false_condition_does_not_short_circuit_other_types(self, source_type):
        ds = _dataset(
            source_type=source_type,
            lastSucceedRound=1,
            conditions=[{"type": "JobStatus", "status": "False"}],
        )
        assert derive_phase(ds) is DatasetPhase.READY

    @pytest.mark.parametrize("desired,last", [(0, 0), (1, 0), (0, 1), (7, 7)])
    def test_integer_rounds_never_fall_back_to_pending(self, desired, last):
        ds = _dataset(data_sync_round=desired, lastSucceedRound=last)
        assert derive_phase(ds) is not DatasetPhase.PENDING
