"""Unit tests for the round history tracker."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dataset_operator.controller.rounds import RoundTracker, job_failed, job_succeeded, trim_history
from dataset_operator.errors import NotFoundError
from dataset_operator.models import Dataset, DatasetStatus, SyncRoundStatus
from tests.fakes import make_dataset

CREATED = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def tracker(store, controller_config, kube_config) -> RoundTracker:
    return RoundTracker(store, controller_config, kube_config)


def _add_job(store, name: str, status: dict, namespace: str = "default") -> None:
    store.jobs[(namespace, name)] = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": namespace},
        "status": status,
    }


def _in_flight(round_: int = 2, **status) -> Dataset:
    return Dataset.from_object(
        make_dataset(
            data_sync_round=round_,
            status={"inProcessing": True, "inProcessingRound": round_, **status},
        )
    )


class TestJobPredicates:
    def test_succeeded(self):
        assert job_succeeded({"status": {"succeeded": 1}})
        assert not job_succeeded({"status": {"succeeded": 0}})
        assert not job_succeeded({})

    def test_failed(self):
        assert job_failed({"status": {"conditions": [{"type": "Failed", "status": "True"}]}})
        assert not job_failed({"status": {"conditions": [{"type": "Failed", "status": "False"}]}})
        assert not job_failed({"status": {"conditions": [{"type": "Complete", "status": "True"}]}})
        assert not job_failed({"status": None})


class TestTrimHistory:
    def test_keeps_last_five_rounds(self):
        status = DatasetStatus(sync_round_statuses=[SyncRoundStatus(round=r) for r in range(1, 11)])
        trim_history(status, 10)
        assert [s.round for s in status.sync_round_statuses] == [6, 7, 8, 9, 10]

    def test_short_history_untouched(self):
        status = DatasetStatus(sync_round_statuses=[SyncRoundStatus(round=1)])
        trim_history(status, 3)
        assert len(status.sync_round_statuses) == 1


class TestRoundTracker:
    async def test_non_preload_types_use_creation_time(self, tracker, store):
        ds = Dataset.from_object(make_dataset(source_type="NFS", uri="nfs://h/p"))
        await tracker.run(ds)
        assert ds.status.last_sync_time == CREATED
        assert store.calls == []

    async def test_running_job_adds_history_entry(self, tracker, store):
        _add_job(store, "dataset-ds-round-2", {"active": 1})
        ds = _in_flight()

        await tracker.run(ds)

        assert ds.status.in_processing is True
        [entry] = ds.status.sync_round_statuses
        assert entry.round == 2
        assert entry.job_name == "dataset-ds-round-2"
        assert entry.start_time is not None
        assert entry.succeed is False

    async def test_running_job_keeps_existing_entry(self, tracker, store):
        _add_job(store, "dataset-ds-round-2", {"active": 1})
        started = datetime(2024, 2, 1, tzinfo=UTC)
        ds = _in_flight(
            syncRoundStatuses=[{"round": 2, "jobName": "dataset-ds-round-2", "startTime": started.isoformat()}]
        )

        await tracker.run(ds)

        assert len(ds.status.sync_round_statuses) == 1
        assert ds.status.sync_round_statuses[0].start_time == started

    async def test_succeeded_job_closes_round(self, tracker, store):
        _add_job(
            store,
            "dataset-ds-round-2",
            {
                "succeeded": 1,
                "startTime": "2024-03-01T10:00:00Z",
                "completionTime": "2024-03-01T10:05:00Z",
            },
        )
        ds = _in_flight(lastSucceedRound=1)

        await tracker.run(ds)

        status = ds.status
        completed = datetime(2024, 3, 1, 10, 5, tzinfo=UTC)
        assert status.in_processing is False
        assert status.in_processing_round == 0
        assert status.last_succeed_round == 2
        assert status.last_sync_time == completed
        [entry] = status.sync_round_statuses
        assert entry.succeed is True
        assert entry.start_time == datetime(2024, 3, 1, 10, tzinfo=UTC)
        assert entry.end_time == completed

    async def test_failed_job_closes_round_without_success(self, tracker, store):
        _add_job(store, "dataset-ds-round-2", {"failed": 5, "conditions": [{"type": "Failed", "status": "True"}]})
        ds = _in_flight(lastSucceedRound=1)

        await tracker.run(ds)

        assert ds.status.in_processing is False
        assert ds.status.in_processing_round == 0
        assert ds.status.last_succeed_round == 1
        assert ds.status.sync_round_statuses[0].succeed is False

    async def test_missing_in_flight_job_raises(self, tracker):
        with pytest.raises(NotFoundError):
            await tracker.run(_in_flight())

    async def test_idle_uses_last_succeeded_job_completion(self, tracker, store):
        _add_job(store, "dataset-ds-round-3", {"succeeded": 1, "completionTime": "2024-04-01T00:00:00Z"})
        ds = Dataset.from_object(make_dataset(data_sync_round=3, status={"lastSucceedRound": 3}))

        await tracker.run(ds)

        assert ds.status.last_sync_time == datetime(2024, 4, 1, tzinfo=UTC)

    async def test_idle_falls_back_to_creation_time(self, tracker, store):
        ds = Dataset.from_object(make_dataset(data_sync_round=3, status={"lastSucceedRound": 3}))

        await tracker.run(ds)

        assert ds.status.last_sync_time == CREATED
        assert store.called("get_job") == [("get_job", "default", "dataset-ds-round-3")]

    async def test_idle_trims_history(self, tracker, store):
        history = [{"round": r, "succeed": True} for r in range(1, 9)]
        ds = Dataset.from_object(
            make_dataset(data_sync_round=8, status={"lastSucceedRound": 0, "syncRoundStatuses": history})
        )

        await tracker.run(ds)

        assert [s.round for s in ds.status.sync_round_statuses] == [4, 5, 6, 7, 8]
        assert store.called("get_job") == []
