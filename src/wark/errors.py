"""
wark — error taxonomy

File: src/wark/errors.py
Last updated: 2026-10-18

Purpose
- Classify every failure surfaced by the engine into a small, closed set of kinds.
- Give each kind a stable ordinal for process exit codes and HTTP-style statuses.

What should be included in this file
- ``ErrorKind`` with exit-code / status mapping.
- ``WarkError`` carrying message, optional suggestion, structured details, and cause.
- Translation of persistence-layer exceptions into ``WarkError`` kinds.

Functional requirements
- Validation and state errors are raised before any mutation.
- Store failures surface as ``Internal``; lost claim races surface as ``ConcurrentConflict``.

Non-functional requirements
- No imports of heavy modules; safe to import from every layer.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from enum import StrEnum
else:
    try:
        from enum import StrEnum
    except ImportError:

        class StrEnum(str, Enum):
            """Compatibility fallback for Python < 3.11."""


class ErrorKind(StrEnum):
    GENERAL = "general"
    INVALID_ARGS = "invalid_args"
    NOT_FOUND = "not_found"
    STATE_ERROR = "state_error"
    INTERNAL = "internal"
    CONCURRENT_CONFLICT = "concurrent_conflict"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUSES[self]

    @property
    def retryable(self) -> bool:
        return self in {ErrorKind.CONCURRENT_CONFLICT, ErrorKind.INTERNAL}


_EXIT_CODES: Final[dict[ErrorKind, int]] = {
    ErrorKind.GENERAL: 1,
    ErrorKind.INVALID_ARGS: 2,
    ErrorKind.NOT_FOUND: 3,
    ErrorKind.STATE_ERROR: 4,
    ErrorKind.INTERNAL: 5,
    ErrorKind.CONCURRENT_CONFLICT: 6,
}

_HTTP_STATUSES: Final[dict[ErrorKind, int]] = {
    ErrorKind.GENERAL: 500,
    ErrorKind.INVALID_ARGS: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STATE_ERROR: 422,
    ErrorKind.INTERNAL: 500,
    ErrorKind.CONCURRENT_CONFLICT: 409,
}


class WarkError(Exception):
    """Typed engine error. ``kind`` decides how callers branch on it."""

    kind: ErrorKind = ErrorKind.GENERAL

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        details: Mapping[str, object] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details: dict[str, object] = dict(details or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.kind.value,
            "message": self.message,
            "exit_code": self.exit_code,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return self.message


class GeneralError(WarkError):
    kind = ErrorKind.GENERAL


class InvalidArgsError(WarkError):
    kind = ErrorKind.INVALID_ARGS


class NotFoundError(WarkError):
    kind = ErrorKind.NOT_FOUND


class StateError(WarkError):
    kind = ErrorKind.STATE_ERROR


class InternalError(WarkError):
    kind = ErrorKind.INTERNAL


class ConcurrentConflictError(WarkError):
    kind = ErrorKind.CONCURRENT_CONFLICT


_ERROR_TYPES: Final[dict[ErrorKind, type[WarkError]]] = {
    ErrorKind.GENERAL: GeneralError,
    ErrorKind.INVALID_ARGS: InvalidArgsError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.STATE_ERROR: StateError,
    ErrorKind.INTERNAL: InternalError,
    ErrorKind.CONCURRENT_CONFLICT: ConcurrentConflictError,
}


def error_for_kind(kind: ErrorKind | str, message: str, **kwargs: object) -> WarkError:
    """Build the ``WarkError`` subclass registered for ``kind``."""

    resolved = ErrorKind(kind)
    return _ERROR_TYPES[resolved](message, **kwargs)  # type: ignore[arg-type]


def kind_of(exc: BaseException) -> ErrorKind:
    if isinstance(exc, WarkError):
        return exc.kind
    return ErrorKind.GENERAL


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Re-raise persistence and validation failures as ``WarkError`` kinds."""

    from wark.persistence.base import ConflictError, StoreError

    try:
        yield
    except WarkError:
        raise
    except ConflictError as exc:
        raise ConcurrentConflictError(
            f"{operation}: {exc}",
            suggestion="Another caller changed this ticket first; re-read it and retry.",
            cause=exc,
        ) from exc
    except StoreError as exc:
        raise InternalError(f"{operation} failed: {exc}", cause=exc) from exc
    except ValueError as exc:
        raise InvalidArgsError(f"{operation}: {exc}", cause=exc) from exc


__all__ = [
    "ConcurrentConflictError",
    "ErrorKind",
    "GeneralError",
    "InternalError",
    "InvalidArgsError",
    "NotFoundError",
    "StateError",
    "WarkError",
    "error_for_kind",
    "kind_of",
    "translate_errors",
]
