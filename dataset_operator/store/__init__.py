"""Object store collaborators."""

from dataset_operator.store.base import DatasetList, Manifest, ObjectStore, WatchEvent
from dataset_operator.store.k8s import K8sObjectStore

__all__ = ["DatasetList", "K8sObjectStore", "Manifest", "ObjectStore", "WatchEvent"]
