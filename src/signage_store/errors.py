from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from pydantic import ValidationError as PydanticValidationError


class SignageStoreError(Exception):
    """Base class for every failure raised by the storage engine."""


class StoreError(SignageStoreError):
    """Adapter-level I/O failure. Always fatal to the calling operation."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(SignageStoreError):
    """A record, file or entity id does not exist."""

    def __init__(self, message: str, *, path: str | None = None, record_id: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.record_id = record_id


class CorruptRecordError(SignageStoreError):
    """A stored payload exists but cannot be decoded as JSON."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


@dataclass(frozen=True)
class ValidationIssue:
    location: str
    message: str


class ValidationError(SignageStoreError):
    """A record failed schema validation.

    Wraps pydantic's error so callers never depend on it directly; each
    issue keeps the dotted field path of the offending value.
    """

    def __init__(self, entity: str, issues: Sequence[ValidationIssue]) -> None:
        self.entity = entity
        self.issues = list(issues)
        details = "; ".join(f"{issue.location or '<root>'}: {issue.message}" for issue in self.issues)
        super().__init__(f"{entity} failed validation: {details}")

    @classmethod
    def from_pydantic(cls, entity: str, exc: PydanticValidationError) -> "ValidationError":
        issues = [
            ValidationIssue(
                location=".".join(str(part) for part in error["loc"]),
                message=error["msg"],
            )
            for error in exc.errors()
        ]
        return cls(entity, issues)

    @classmethod
    def single(cls, entity: str, location: str, message: str) -> "ValidationError":
        return cls(entity, [ValidationIssue(location=location, message=message)])


@dataclass(frozen=True)
class BlockingReference:
    id: str
    name: str


class ConflictError(SignageStoreError):
    """A delete was refused because other records still reference the target."""

    def __init__(self, message: str, references: Sequence[BlockingReference] = ()) -> None:
        super().__init__(message)
        self.references = list(references)


class RenderError(SignageStoreError):
    """The CSV image renderer failed; the content was not created or updated."""


class LockReentryError(SignageStoreError, RuntimeError):
    """A critical section tried to acquire a lock key it already holds."""

    def __init__(self, key: str) -> None:
        super().__init__(f"lock {key!r} is already held by the current operation")
        self.key = key


def describe_failure(exc: BaseException) -> str:
    """Return the user-facing message for a failed operation."""
    if isinstance(exc, ConflictError):
        if exc.references:
            names = ", ".join(ref.name for ref in exc.references)
            return f"{exc} (referenced by: {names})"
        return str(exc)
    return f"operation failed: {exc}"
