"""Typed option schemas per source type.

``spec.source.options`` is a free-form string map shared by the controller
and the loader. The controller consumes a few keys itself (accelerator kind,
environment definitions); everything else is forwarded to the loader as
``--options=key=value``. Keys a schema does not know are ignored here and
still forwarded.
"""

from __future__ import annotations

from enum import Enum

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from dataset_operator.errors import ValidationError
from dataset_operator.models.dataset import DatasetType

logger = structlog.get_logger()

ACCELERATOR_OPTION = "gpuType"
CONDA_ENVIRONMENT_OPTION = "condaEnvironmentYml"
PIP_REQUIREMENTS_OPTION = "pipRequirementsTxt"

# Keys the controller turns into job resources or mounts instead of args
CONSUMED_OPTIONS = frozenset(
    {ACCELERATOR_OPTION, CONDA_ENVIRONMENT_OPTION, PIP_REQUIREMENTS_OPTION}
)


class AcceleratorKind(str, Enum):
    """Accelerator families a sync job can request."""

    NVIDIA_GPU = "nvidia-gpu"
    NVIDIA_VGPU = "nvidia-vgpu"
    METAX_GPU = "metax-gpu"

    @property
    def resources(self) -> dict[str, str]:
        """Extended resource quantities, used for both requests and limits."""
        return dict(_ACCELERATOR_RESOURCES[self])


_ACCELERATOR_RESOURCES: dict[AcceleratorKind, dict[str, str]] = {
    AcceleratorKind.NVIDIA_GPU: {"nvidia.com/gpu": "1"},
    AcceleratorKind.NVIDIA_VGPU: {"nvidia.com/vgpu": "1", "nvidia.com/gpumem": "500"},
    AcceleratorKind.METAX_GPU: {"metax-tech.com/gpu": "1"},
}


class SourceOptions(BaseModel):
    """Options understood for every source type."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    gpu_type: str | None = Field(default=None, alias=ACCELERATOR_OPTION)

    @property
    def accelerator(self) -> AcceleratorKind | None:
        if not self.gpu_type:
            return None
        try:
            return AcceleratorKind(self.gpu_type)
        except ValueError:
            logger.warning("options.accelerator.unknown", gpu_type=self.gpu_type)
            return None


class GitOptions(SourceOptions):
    """Any non-empty ``submodules`` value turns on recursive checkout."""

    branch: str | None = None
    commit: str | None = None
    depth: int | None = None
    submodules: str | None = None

    @field_validator("depth", "submodules", mode="before")
    @classmethod
    def _blank_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def recurse_submodules(self) -> bool:
        return bool(self.submodules)


class S3Options(SourceOptions):
    region: str | None = None
    endpoint: str | None = None
    provider: str | None = None


class HTTPOptions(SourceOptions):
    """Every other key is sent as an HTTP header by the loader."""


class ModelHubOptions(SourceOptions):
    repo: str | None = None
    repo_type: str | None = Field(default=None, alias="repoType")
    endpoint: str | None = None
    include: str | None = None
    exclude: str | None = None
    revision: str | None = None


class CondaOptions(SourceOptions):
    conda_environment_yml: str | None = Field(default=None, alias=CONDA_ENVIRONMENT_OPTION)
    pip_requirements_txt: str | None = Field(default=None, alias=PIP_REQUIREMENTS_OPTION)

    @field_validator("conda_environment_yml", "pip_requirements_txt")
    @classmethod
    def _blank_is_unset(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_environment(self) -> bool:
        return self.conda_environment_yml is not None or self.pip_requirements_txt is not None


_SCHEMAS: dict[DatasetType, type[SourceOptions]] = {
    DatasetType.GIT: GitOptions,
    DatasetType.S3: S3Options,
    DatasetType.HTTP: HTTPOptions,
    DatasetType.CONDA: CondaOptions,
    DatasetType.HUGGING_FACE: ModelHubOptions,
    DatasetType.MODEL_SCOPE: ModelHubOptions,
}


def parse_options(source_type: DatasetType, raw: dict[str, str] | None) -> SourceOptions:
    """Validate ``raw`` against the schema for ``source_type``.

    Raises:
        ValidationError: a known key holds a value of the wrong shape
    """
    schema = _SCHEMAS.get(source_type, SourceOptions)
    try:
        return schema.model_validate(raw or {})
    except pydantic.ValidationError as e:
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"]) for err in e.errors()
        )
        raise ValidationError(
            f"invalid {source_type.value} options: {fields}",
            details={"errors": e.errors(include_url=False)},
        ) from e


def loader_options(raw: dict[str, str] | None) -> list[tuple[str, str]]:
    """Options forwarded to the loader, in stable key order."""
    return sorted(
        (k, v) for k, v in (raw or {}).items() if k not in CONSUMED_OPTIONS
    )
