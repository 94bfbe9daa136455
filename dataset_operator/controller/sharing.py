"""Sharing validator for REFERENCE Datasets."""

from __future__ import annotations

from typing import Any

from dataset_operator.controller.steps import ReconcileStep, fetch_source_dataset
from dataset_operator.errors import SharingDeniedError, StoreError, ValidationError
from dataset_operator.models import Dataset, DatasetType
from dataset_operator.utils.kube import labels_of

_OP_IN = "In"
_OP_NOT_IN = "NotIn"
_OP_EXISTS = "Exists"
_OP_DOES_NOT_EXIST = "DoesNotExist"


def match_label_selector(selector: dict[str, Any], labels: dict[str, str]) -> bool:
    """Evaluate a Kubernetes label selector against ``labels``.

    An empty selector matches everything.

    Raises:
        ValidationError: the selector is malformed
    """
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False

    for expr in selector.get("matchExpressions") or []:
        key = expr.get("key")
        op = expr.get("operator")
        values = expr.get("values") or []
        if not key:
            raise ValidationError("label selector expression has no key")

        if op in (_OP_IN, _OP_NOT_IN):
            if not values:
                raise ValidationError(f"label selector operator {op} on {key!r} needs values")
            present = key in labels and labels[key] in values
            if (op == _OP_IN) != present:
                return False
        elif op in (_OP_EXISTS, _OP_DOES_NOT_EXIST):
            if values:
                raise ValidationError(f"label selector operator {op} on {key!r} takes no values")
            if (op == _OP_EXISTS) != (key in labels):
                return False
        else:
            raise ValidationError(f"unsupported label selector operator {op!r}")

    return True


class SharingValidator(ReconcileStep):
    """Authorize a REFERENCE Dataset against its source's sharing rules."""

    condition_type = "Config"

    async def run(self, dataset: Dataset) -> None:
        if dataset.source_type is not DatasetType.REFERENCE:
            return

        source = await fetch_source_dataset(self._store, dataset)
        uri = dataset.spec.source.uri
        if not source.spec.share:
            raise SharingDeniedError(f"source dataset {uri} is not shared")

        selector = source.spec.share_to_namespace_selector
        if selector is None:
            return

        namespace = dataset.metadata.namespace
        try:
            ns = await self._store.get_namespace(namespace)
        except StoreError as e:
            raise StoreError(
                f"fetch current namespace {namespace} error: {e}", status=e.status
            ) from e

        try:
            allowed = match_label_selector(selector, labels_of(ns))
        except ValidationError as e:
            raise ValidationError(f"parse share to namespace selector error: {e}") from e
        if not allowed:
            raise SharingDeniedError(f"source dataset {uri} is not shared to current namespace")
