"""Dataset reconciliation engine."""

from dataset_operator.controller.manager import DatasetController
from dataset_operator.controller.queue import WorkQueue
from dataset_operator.controller.reconciler import DatasetReconciler, ReconcileResult

__all__ = ["DatasetController", "DatasetReconciler", "ReconcileResult", "WorkQueue"]
