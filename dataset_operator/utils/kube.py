"""Helpers for plain Kubernetes manifests."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dataset_operator.models import Dataset

_QUANTITY_RE = re.compile(r"^([+-]?[0-9.]+)([a-zA-Z]*)$")


def labels_of(obj: dict[str, Any] | None) -> dict[str, str]:
    """Return an object's labels, empty when unset."""
    if not obj:
        return {}
    return (obj.get("metadata") or {}).get("labels") or {}


def owner_reference(dataset: "Dataset", api_version: str, kind: str = "Dataset") -> dict[str, Any]:
    """Controller owner reference pointing at ``dataset``."""
    return {
        "apiVersion": api_version,
        "kind": kind,
        "name": dataset.metadata.name,
        "uid": dataset.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def child_metadata(
    dataset: "Dataset",
    name: str,
    *,
    label_key: str,
    api_version: str,
    namespace: str | None = None,
) -> dict[str, Any]:
    """Metadata for an object the Dataset creates and owns.

    Children inherit the Dataset's labels and annotations and carry the
    ownership label on top.
    """
    labels = dict(dataset.metadata.labels)
    labels[label_key] = dataset.metadata.name
    meta: dict[str, Any] = {
        "name": name,
        "labels": labels,
        "ownerReferences": [owner_reference(dataset, api_version)],
    }
    if dataset.metadata.annotations:
        meta["annotations"] = dict(dataset.metadata.annotations)
    if namespace is not None:
        meta["namespace"] = namespace
    return meta


def is_zero_quantity(value: Any) -> bool:
    """Whether a resource quantity is missing or numerically zero."""
    if value is None:
        return True
    text = str(value).strip()
    if not text:
        return True
    match = _QUANTITY_RE.match(text)
    if not match:
        return False
    try:
        return float(match.group(1)) == 0
    except ValueError:
        return False
