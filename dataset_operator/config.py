"""Dataset operator configuration management.

Configuration sources (in priority order):
1. Environment variables (DATASET_OPERATOR_ prefix)
2. Config file (config.yaml)
3. Defaults
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Base template for data sync jobs. The builder fills in the container name,
# resources, mounts and args; everything else comes from here.
DEFAULT_JOB_SPEC_YAML = """
backoffLimit: 4
completionMode: NonIndexed
completions: 1
parallelism: 1
template:
  spec:
    restartPolicy: Never
    containers:
    - image: ubuntu:20.04
      command: ["/bin/bash", "-c", "echo 'Container args: '$(echo $@)"]
      resources:
        requests:
          cpu: 100m
          memory: 100Mi
        limits:
          cpu: 500m
          memory: 500Mi
"""


class ServerConfig(BaseModel):
    """Probe server configuration."""

    host: str = "0.0.0.0"
    port: int = 8081


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    # json: one JSON object per line; console: human-readable for local runs
    format: Literal["json", "console"] = "json"


class KubeConfig(BaseModel):
    """Kubernetes API configuration.

    The Dataset custom resource coordinates are configurable so the operator
    can follow a renamed or re-versioned CRD without code changes.
    """

    kubeconfig: str | None = None  # None = in-cluster config

    # None = watch Datasets in all namespaces
    namespace: str | None = None

    group: str = "dataset.baizeai.io"
    version: str = "v1alpha1"
    plural: str = "datasets"
    kind: str = "Dataset"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


class ControllerConfig(BaseModel):
    """Reconciliation loop configuration."""

    # Number of concurrent passes (always for different Datasets)
    workers: int = 4

    # Full re-list interval, independent of watch events
    resync_seconds: int = 600

    idle_requeue_seconds: float = 30.0
    processing_requeue_seconds: float = 5.0

    # After this long past the deletion timestamp, cleanup errors are
    # swallowed so the finalizer can be removed.
    force_delete_grace_seconds: int = 300

    # Per-key backoff after a failed pass: base * 2^failures, capped
    retry_base_delay: float = 1.0
    retry_max_delay: float = 300.0

    finalizer: str = "dataset-controller"
    dataset_label: str = "baize.io/dataset-name"

    # Also delete sync jobs on the deletion path (owner references already
    # garbage-collect them once the Dataset is purged).
    cleanup_jobs_on_delete: bool = False

    job_spec_yaml: str = DEFAULT_JOB_SPEC_YAML

    def job_spec_template(self) -> dict[str, Any]:
        """Parse the job-spec base template.

        Falls back to the built-in default when the configured value is blank.
        """
        raw = self.job_spec_yaml if self.job_spec_yaml.strip() else DEFAULT_JOB_SPEC_YAML
        spec = yaml.safe_load(raw) or {}
        if not isinstance(spec, dict):
            raise ValueError("job_spec_yaml must be a YAML mapping")
        containers = spec.get("template", {}).get("spec", {}).get("containers") or []
        if not containers:
            raise ValueError("job_spec_yaml must define at least one container")
        return spec


class Settings(BaseSettings):
    """Dataset operator settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATASET_OPERATOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    kube: KubeConfig = Field(default_factory=KubeConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # File values arrive as init kwargs; environment must win over them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. DATASET_OPERATOR_CONFIG_FILE environment variable
    2. ./config.yaml
    3. /etc/dataset-operator/config.yaml
    """
    import os

    config_paths = [
        os.environ.get("DATASET_OPERATOR_CONFIG_FILE"),
        Path("config.yaml"),
        Path("/etc/dataset-operator/config.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. YAML config file (if exists)
    2. Environment variables (override)
    3. Defaults
    """
    file_config = _load_config_file()

    # Environment variables will override via pydantic-settings
    return Settings(**file_config)
