"""Environment config manager for CONDA Datasets.

The conda environment and pip requirements are too large for command line
arguments, so they travel to the loader in a config object mounted into the
sync job.
"""

from __future__ import annotations

from typing import cast

from dataset_operator.controller.naming import (
    ENVIRONMENT_YAML_KEY,
    REQUIREMENTS_TXT_KEY,
    config_map_name,
)
from dataset_operator.controller.steps import ReconcileStep
from dataset_operator.errors import NotFoundError
from dataset_operator.models import Dataset, DatasetType
from dataset_operator.models.options import CondaOptions, parse_options
from dataset_operator.utils.kube import child_metadata


def environment_data(options: CondaOptions) -> dict[str, str]:
    """Config object entries for the environment definitions that are set."""
    data: dict[str, str] = {}
    if options.conda_environment_yml is not None:
        data[ENVIRONMENT_YAML_KEY] = options.conda_environment_yml
    if options.pip_requirements_txt is not None:
        data[REQUIREMENTS_TXT_KEY] = options.pip_requirements_txt
    return data


class EnvConfigManager(ReconcileStep):
    condition_type = "ConfigMap"

    async def run(self, dataset: Dataset) -> None:
        if dataset.source_type is not DatasetType.CONDA:
            return

        options = cast(CondaOptions, parse_options(DatasetType.CONDA, dataset.spec.source.options))
        data = environment_data(options)

        namespace = dataset.metadata.namespace
        name = config_map_name(dataset)
        try:
            existing = await self._store.get_config_map(namespace, name)
        except NotFoundError:
            existing = None

        if existing is None:
            if not data:
                return
            config_map = {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": child_metadata(
                    dataset,
                    name,
                    label_key=self.label_key,
                    api_version=self._kube.api_version,
                    namespace=namespace,
                ),
                "data": data,
            }
            await self._store.create_config_map(namespace, config_map)
            self._log.info("envconfig.created", dataset=dataset.key, config_map=name, keys=sorted(data))
            return

        # Only the two well-known keys are managed; manual edits to others stay
        current = existing.get("data") or {}
        merged = {**current, **data}
        if merged == current:
            return
        existing["data"] = merged
        await self._store.update_config_map(namespace, existing)
        self._log.info("envconfig.updated", dataset=dataset.key, config_map=name, keys=sorted(data))
