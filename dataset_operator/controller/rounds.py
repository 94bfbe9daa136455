"""Round history tracker."""

from __future__ import annotations

from dataset_operator.controller.naming import job_name
from dataset_operator.controller.steps import ReconcileStep
from dataset_operator.errors import NotFoundError
from dataset_operator.models import Dataset, DatasetStatus, SyncRoundStatus
from dataset_operator.store.base import Manifest
from dataset_operator.utils.datetime import parse_time, utcnow

# Rounds older than dataSyncRound - RETAINED_ROUNDS are dropped from history
RETAINED_ROUNDS = 5


def job_succeeded(job: Manifest) -> bool:
    return ((job.get("status") or {}).get("succeeded") or 0) > 0


def job_failed(job: Manifest) -> bool:
    conditions = (job.get("status") or {}).get("conditions") or []
    return any(c.get("type") == "Failed" and c.get("status") == "True" for c in conditions)


def trim_history(status: DatasetStatus, data_sync_round: int) -> None:
    status.sync_round_statuses = [
        s for s in status.sync_round_statuses if s.round + RETAINED_ROUNDS > data_sync_round
    ]


class RoundTracker(ReconcileStep):
    """Observe the in-flight sync job and record the round's outcome."""

    condition_type = "JobStatus"

    async def run(self, dataset: Dataset) -> None:
        status = dataset.status
        created_at = dataset.metadata.creation_timestamp

        if not dataset.source_type.supports_preload:
            status.last_sync_time = created_at
            return

        if not status.in_processing:
            status.last_sync_time = await self._last_completion(dataset) or created_at
            trim_history(status, dataset.spec.data_sync_round)
            return

        round_ = status.in_processing_round
        name = job_name(dataset.metadata.name, round_)
        job = await self._store.get_job(dataset.metadata.namespace, name)

        entry = next((s for s in status.sync_round_statuses if s.round == round_), None)
        if entry is None:
            entry = SyncRoundStatus(round=round_, job_name=name, start_time=utcnow())
            status.sync_round_statuses.append(entry)

        job_status = job.get("status") or {}
        if job_succeeded(job):
            completed_at = parse_time(job_status.get("completionTime")) or utcnow()
            entry.start_time = parse_time(job_status.get("startTime")) or entry.start_time
            entry.end_time = completed_at
            entry.succeed = True
            status.last_sync_time = completed_at
            status.in_processing = False
            status.last_succeed_round = round_
            status.in_processing_round = 0
            self._log.info("round.succeeded", dataset=dataset.key, round=round_, job=name)
        elif job_failed(job):
            entry.succeed = False
            status.in_processing = False
            status.in_processing_round = 0
            self._log.warning("round.failed", dataset=dataset.key, round=round_, job=name)

        trim_history(status, dataset.spec.data_sync_round)

    async def _last_completion(self, dataset: Dataset):
        last_round = dataset.status.last_succeed_round
        if last_round <= 0:
            return None
        name = job_name(dataset.metadata.name, last_round)
        try:
            job = await self._store.get_job(dataset.metadata.namespace, name)
        except NotFoundError:
            # Finished jobs may be cleaned up by a TTL controller
            self._log.debug("round.job_missing", dataset=dataset.key, job=name)
            return None
        return parse_time((job.get("status") or {}).get("completionTime"))
