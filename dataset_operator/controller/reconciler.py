"""Reconciliation dispatcher.

One pass loads a Dataset, runs its step chain, derives the phase, writes the
status back when it changed and tells the caller when to look again.

Chains:
- normal: sharing, finalizer(add), storage, env config, sync job, rounds
- deletion: [sync job cleanup], storage(release), finalizer(remove)

The first failing step stops the chain; the phase is derived regardless.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pydantic
import structlog

from dataset_operator.controller.conditions import set_condition
from dataset_operator.controller.envconfig import EnvConfigManager
from dataset_operator.controller.finalizer import FinalizerManager
from dataset_operator.controller.jobs import SyncJobBuilder
from dataset_operator.controller.phase import derive_phase
from dataset_operator.controller.rounds import RoundTracker
from dataset_operator.controller.sharing import SharingValidator
from dataset_operator.controller.steps import ReconcileStep
from dataset_operator.controller.storage import StorageBinder
from dataset_operator.errors import NotFoundError
from dataset_operator.models import Dataset, DatasetPhase

if TYPE_CHECKING:
    from dataset_operator.config import ControllerConfig, KubeConfig
    from dataset_operator.store import ObjectStore

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Outcome of one pass.

    Attributes:
        requeue_after: Seconds until the next pass, None for no requeue
        error: Set when the pass must be retried with backoff
    """

    requeue_after: float | None = None
    error: Exception | None = None


class DatasetReconciler:
    """Runs reconciliation passes for Datasets."""

    def __init__(
        self,
        store: "ObjectStore",
        config: "ControllerConfig",
        kube: "KubeConfig",
        *,
        job_template: dict[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._kube = kube
        self._log = logger.bind(component="reconciler")

        # Parsed once; a broken template fails startup rather than every pass
        template = job_template if job_template is not None else config.job_spec_template()

        self._sharing = SharingValidator(store, config, kube)
        self._finalizer = FinalizerManager(store, config, kube)
        self._storage = StorageBinder(store, config, kube)
        self._env_config = EnvConfigManager(store, config, kube)
        self._sync_job = SyncJobBuilder(store, config, kube, job_template=template)
        self._rounds = RoundTracker(store, config, kube)

    def chain(self, dataset: Dataset) -> list[ReconcileStep]:
        """Steps for this pass, in order."""
        if dataset.is_deleted:
            steps: list[ReconcileStep] = []
            if self._config.cleanup_jobs_on_delete:
                steps.append(self._sync_job)
            steps += [self._storage, self._finalizer]
            return steps
        return [
            self._sharing,
            self._finalizer,
            self._storage,
            self._env_config,
            self._sync_job,
            self._rounds,
        ]

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass for ``namespace/name``."""
        log = self._log.bind(dataset=f"{namespace}/{name}")

        try:
            obj = await self._store.get_dataset(namespace, name)
        except NotFoundError:
            log.debug("dataset.reconcile.gone")
            return ReconcileResult()
        except Exception as e:
            log.error("dataset.reconcile.load_failed", error=str(e))
            return ReconcileResult()

        try:
            dataset = Dataset.from_object(obj)
        except pydantic.ValidationError as e:
            log.error("dataset.reconcile.invalid", error=str(e))
            return ReconcileResult()

        snapshot = dataset.status.model_copy(deep=True)
        if dataset.status.phase is None:
            dataset.status.phase = DatasetPhase.PENDING

        log.debug("dataset.reconcile.start", deleted=dataset.is_deleted)
        for step in self.chain(dataset):
            error: Exception | None = None
            try:
                await step.run(dataset)
            except Exception as e:
                error = e
            set_condition(dataset.status.conditions, step.condition_type, error)
            if error is not None:
                log.error("dataset.reconcile.step_failed", step=step.name, error=str(error))
                break

        dataset.status.phase = derive_phase(dataset)

        if dataset.status != snapshot:
            try:
                await self._store.update_dataset_status(dataset.to_object())
            except NotFoundError as e:
                if dataset.is_deleted:
                    # Finalizer removal let the store purge the object
                    log.info("dataset.reconcile.purged")
                    return ReconcileResult()
                log.error("dataset.reconcile.status_failed", error=str(e))
                return ReconcileResult(requeue_after=self._config.idle_requeue_seconds, error=e)
            except Exception as e:
                log.error("dataset.reconcile.status_failed", error=str(e))
                return ReconcileResult(requeue_after=self._config.idle_requeue_seconds, error=e)

        phase = dataset.status.phase
        log.debug("dataset.reconcile.done", phase=phase.value)
        if phase in (DatasetPhase.READY, DatasetPhase.FAILED):
            return ReconcileResult()
        if phase is DatasetPhase.PROCESSING:
            return ReconcileResult(requeue_after=self._config.processing_requeue_seconds)
        return ReconcileResult(requeue_after=self._config.idle_requeue_seconds)
