"""Source URI parsing.

Each source type has its own URI layout:

- GIT: http[s]://<host>/<owner>/<repo>[.git] or git://<host>/<owner>/<repo>[.git]
- S3: s3://<bucket>/<path/to/directory>
- HTTP: http[s]://<host>/<path/to/directory>?<query>
- PVC: pvc://<name>/<path/to/directory>
- NFS: nfs://<host>/<path/to/directory>
- CONDA: conda://<name>?[python=<python_version>]
- REFERENCE: dataset://<namespace>/<dataset>
- HUGGING_FACE: huggingface://<repoName>?[repoType=<repoType>]
- MODEL_SCOPE: modelscope://<namespace>/<model>

The controller only needs to look inside the PVC, NFS and REFERENCE forms;
the rest are handed to the loader verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from dataset_operator.errors import ValidationError


@dataclass(frozen=True, slots=True)
class DatasetRef:
    """Namespace-qualified pointer to another Dataset."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class ShareLocation:
    """Network filesystem export."""

    host: str
    path: str


def _split(uri: str, scheme: str):
    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise ValidationError(f"invalid uri {uri!r}: {e}") from e
    if parts.scheme != scheme:
        raise ValidationError(f"uri {uri!r} must use the {scheme}:// scheme")
    if not parts.netloc:
        raise ValidationError(f"uri {uri!r} has no host")
    return parts


def parse_reference_uri(uri: str) -> DatasetRef:
    """Parse ``dataset://<namespace>/<name>``."""
    parts = _split(uri, "dataset")
    name = parts.path.strip("/")
    if not name:
        raise ValidationError(f"uri {uri!r} has no dataset name")
    return DatasetRef(namespace=parts.netloc, name=name)


def parse_claim_uri(uri: str) -> str:
    """Return the claim name from ``pvc://<name>/<path>``."""
    return _split(uri, "pvc").netloc


def parse_share_uri(uri: str) -> ShareLocation:
    """Parse ``nfs://<host>/<path>``."""
    parts = _split(uri, "nfs")
    return ShareLocation(host=parts.netloc, path=parts.path)
