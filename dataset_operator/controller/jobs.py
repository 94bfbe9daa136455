"""Sync job builder.

A sync job runs the loader for one round: it copies data from the Dataset's
source onto its claim. The job spec starts from the configured base template
and gets the loader container's resources, mounts and arguments filled in.
"""

from __future__ import annotations

import copy
import json
import re
from typing import TYPE_CHECKING, Any

from dataset_operator.controller.naming import (
    DATA_ROOT,
    ENV_CONFIG_DIR,
    ENVIRONMENT_YAML_KEY,
    LOADER_CONTAINER_NAME,
    REQUIREMENTS_TXT_KEY,
    SECRETS_DIR,
    config_map_name,
    job_name,
)
from dataset_operator.controller.steps import ReconcileStep
from dataset_operator.errors import AlreadyExistsError, NotFoundError
from dataset_operator.models import Dataset, DatasetType
from dataset_operator.models.options import CondaOptions, loader_options, parse_options
from dataset_operator.utils.kube import child_metadata

if TYPE_CHECKING:
    from dataset_operator.config import ControllerConfig, KubeConfig
    from dataset_operator.store import Manifest, ObjectStore

ENV_CONFIG_VOLUME = "dataset-env-config"
SECRET_VOLUME = "dataset-secret"
DATA_VOLUME = "dataset-pvc"

_WHITESPACE_RE = re.compile(r"\s")

# (requests, limits) for sources that need more headroom than the template
RESOURCE_PROFILES: dict[DatasetType, tuple[dict[str, str], dict[str, str]]] = {
    DatasetType.CONDA: (
        {"cpu": "2", "memory": "2Gi"},
        {"cpu": "4", "memory": "4Gi"},
    ),
    DatasetType.HUGGING_FACE: (
        {"cpu": "2", "memory": "2Gi"},
        {"cpu": "4", "memory": "8Gi"},
    ),
    DatasetType.MODEL_SCOPE: (
        {"cpu": "2", "memory": "2Gi"},
        {"cpu": "4", "memory": "8Gi"},
    ),
}


def format_option(key: str, value: str) -> str:
    """Render one ``--options`` flag, quoting values with whitespace."""
    if _WHITESPACE_RE.search(value):
        value = json.dumps(value, ensure_ascii=False)
    return f"--options={key}={value}"


def loader_args(dataset: Dataset) -> list[str]:
    """Command line for the loader container."""
    source = dataset.spec.source
    mount = dataset.spec.mount_options

    args = [source.type.value, source.uri]
    args.extend(format_option(k, v) for k, v in loader_options(source.options))
    if mount.path:
        args.append(f"--mount-path={mount.path}")
    if mount.mode:
        args.append(f"--mount-mode={mount.mode}")
    args.append(f"--mount-uid={mount.uid}")
    args.append(f"--mount-gid={mount.gid}")
    args.append(f"--mount-root={DATA_ROOT}")
    return args


def build_job(
    dataset: Dataset,
    template: dict[str, Any],
    *,
    label_key: str,
    api_version: str,
) -> "Manifest":
    """Build the sync job for the Dataset's current round.

    Args:
        dataset: Dataset with ``status.pvcName`` already bound
        template: Parsed job-spec base template
        label_key: Ownership label key
        api_version: Dataset API version for the owner reference

    Raises:
        ValidationError: a typed source option is malformed
    """
    options = parse_options(dataset.source_type, dataset.spec.source.options)

    spec = copy.deepcopy(template)
    pod_spec = spec.setdefault("template", {}).setdefault("spec", {})
    container = pod_spec["containers"][0]
    container["name"] = LOADER_CONTAINER_NAME

    requests: dict[str, str] = {}
    limits: dict[str, str] = {}
    profile = RESOURCE_PROFILES.get(dataset.source_type)
    if profile is not None:
        requests.update(profile[0])
        limits.update(profile[1])
    accelerator = options.accelerator
    if accelerator is not None:
        requests.update(accelerator.resources)
        limits.update(accelerator.resources)

    resources = container.get("resources") or {}
    if requests:
        resources["requests"] = requests
    if limits:
        resources["limits"] = limits
    container["resources"] = resources

    volumes: list[dict[str, Any]] = list(pod_spec.get("volumes") or [])
    mounts: list[dict[str, Any]] = list(container.get("volumeMounts") or [])

    if isinstance(options, CondaOptions) and options.has_environment:
        items = []
        if options.conda_environment_yml is not None:
            items.append({"key": ENVIRONMENT_YAML_KEY, "path": ENVIRONMENT_YAML_KEY})
        if options.pip_requirements_txt is not None:
            items.append({"key": REQUIREMENTS_TXT_KEY, "path": REQUIREMENTS_TXT_KEY})
        volumes.append(
            {
                "name": ENV_CONFIG_VOLUME,
                "configMap": {"name": config_map_name(dataset), "items": items},
            }
        )
        mounts.append({"name": ENV_CONFIG_VOLUME, "mountPath": ENV_CONFIG_DIR, "readOnly": True})

    if dataset.spec.secret_ref:
        volumes.append({"name": SECRET_VOLUME, "secret": {"secretName": dataset.spec.secret_ref}})
        mounts.append({"name": SECRET_VOLUME, "mountPath": SECRETS_DIR, "readOnly": True})

    volumes.append(
        {
            "name": DATA_VOLUME,
            "persistentVolumeClaim": {"claimName": dataset.status.pvc_name},
        }
    )
    mounts.append({"name": DATA_VOLUME, "mountPath": DATA_ROOT})

    pod_spec["volumes"] = volumes
    container["volumeMounts"] = mounts
    container["args"] = loader_args(dataset)

    name = job_name(dataset.metadata.name, dataset.status.in_processing_round)
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": child_metadata(
            dataset,
            name,
            label_key=label_key,
            api_version=api_version,
            namespace=dataset.metadata.namespace,
        ),
        "spec": spec,
    }


class SyncJobBuilder(ReconcileStep):
    """Start a sync job whenever a new round is requested."""

    condition_type = "Job"

    def __init__(
        self,
        store: "ObjectStore",
        config: "ControllerConfig",
        kube: "KubeConfig",
        job_template: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(store, config, kube)
        self._template = job_template if job_template is not None else config.job_spec_template()

    async def run(self, dataset: Dataset) -> None:
        if not dataset.source_type.supports_preload:
            return

        if dataset.is_deleted:
            await self._delete_jobs(dataset)
            return

        status = dataset.status
        desired = dataset.spec.data_sync_round
        if desired <= status.last_succeed_round:
            return

        # One round in flight at a time; the tracker closes it before the next starts
        if status.in_processing and status.in_processing_round != desired:
            self._log.info(
                "job.round_deferred",
                dataset=dataset.key,
                round=desired,
                in_flight=status.in_processing_round,
            )
            return

        # Malformed options must fail before the round is marked in flight
        parse_options(dataset.source_type, dataset.spec.source.options)

        status.in_processing = True
        status.in_processing_round = desired

        job = build_job(
            dataset,
            self._template,
            label_key=self.label_key,
            api_version=self._kube.api_version,
        )
        name = job["metadata"]["name"]
        try:
            await self._store.create_job(dataset.metadata.namespace, job)
        except AlreadyExistsError:
            self._log.debug("job.exists", dataset=dataset.key, job=name)
            return
        self._log.info("job.created", dataset=dataset.key, job=name, round=status.in_processing_round)

    async def _delete_jobs(self, dataset: Dataset) -> None:
        namespace = dataset.metadata.namespace
        try:
            jobs = await self._store.list_jobs(
                namespace, labels={self.label_key: dataset.metadata.name}
            )
        except NotFoundError:
            jobs = []
        except Exception as e:
            if not self.force_delete(dataset):
                raise
            self._log.error("job.list_forced", dataset=dataset.key, error=str(e))
            return

        for job in jobs:
            name = job["metadata"]["name"]
            try:
                await self._store.delete_job(namespace, name)
            except NotFoundError:
                continue
            except Exception as e:
                if not self.force_delete(dataset):
                    raise
                self._log.error("job.delete_forced", dataset=dataset.key, job=name, error=str(e))
                return
            self._log.info("job.deleted", dataset=dataset.key, job=name)
