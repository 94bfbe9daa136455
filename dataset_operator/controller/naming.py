"""Deterministic names and paths for objects a Dataset owns."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dataset_operator.models import Dataset

LOADER_CONTAINER_NAME = "dataset-loader"

# Mount points inside the sync job container
DATA_ROOT = "/dataset/data"
ENV_CONFIG_DIR = "/run/dataset/conda"
SECRETS_DIR = "/run/dataset/secrets"

# Keys of the environment config object
ENVIRONMENT_YAML_KEY = "environment.yaml"
REQUIREMENTS_TXT_KEY = "requirements.txt"


def job_name(dataset_name: str, round_: int) -> str:
    return f"dataset-{dataset_name}-round-{round_}"


def config_map_name(dataset: "Dataset") -> str:
    return f"dataset-{dataset.metadata.name}-config"


def volume_name(namespace: str, suffix: str) -> str:
    """Name of a cluster-scoped volume provisioned for a Dataset."""
    return f"dataset-{namespace}-pvc-{suffix}"
