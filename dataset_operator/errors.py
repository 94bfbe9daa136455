"""Dataset operator error types.

Error codes are stable identifiers for programmatic handling. Reconcile steps
raise these; the dispatcher turns the message into a False condition.
"""

from __future__ import annotations

from typing import Any


class DatasetError(Exception):
    """Base error for all dataset operator exceptions."""

    code: str = "internal_error"
    message: str = "An internal error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class StoreError(DatasetError):
    """Object store call failed for a reason other than the ones below."""

    code = "store_error"
    message = "Object store request failed"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        status: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status = status


class NotFoundError(StoreError):
    """Object not found (404)."""

    code = "not_found"
    message = "Object not found"


class AlreadyExistsError(StoreError):
    """Object already exists (409 AlreadyExists)."""

    code = "already_exists"
    message = "Object already exists"


class ConflictError(StoreError):
    """Stale write rejected by optimistic concurrency (409 Conflict)."""

    code = "conflict"
    message = "Object was modified concurrently"


class ValidationError(DatasetError):
    """Dataset spec is malformed (URI, options, selector)."""

    code = "validation_error"
    message = "Validation error"


class SharingDeniedError(ValidationError):
    """Reference source is not shared with the consuming namespace."""

    code = "sharing_denied"
    message = "Source dataset is not shared"


class OwnershipConflictError(DatasetError):
    """Claim or volume is labeled for a different Dataset.

    Never auto-resolved; requires operator intervention.
    """

    code = "ownership_conflict"
    message = "Resource belongs to another dataset"


class DependencyNotReadyError(DatasetError):
    """A dependent object has not reached the required state yet."""

    code = "dependency_not_ready"
    message = "Dependency is not ready"
