"""Error taxonomy tests: stable kinds, exit codes and translation of lower-level failures."""

from __future__ import annotations

import pytest

from wark.errors import (
    ConcurrentConflictError,
    ErrorKind,
    GeneralError,
    InternalError,
    InvalidArgsError,
    NotFoundError,
    StateError,
    WarkError,
    error_for_kind,
    kind_of,
    translate_errors,
)
from wark.persistence.base import (
    ClaimConflictError,
    IntegrityViolationError,
    StaleWriteError,
    StoreError,
)


@pytest.mark.parametrize(
    ("error_type", "kind", "exit_code", "http_status"),
    [
        (GeneralError, ErrorKind.GENERAL, 1, 500),
        (InvalidArgsError, ErrorKind.INVALID_ARGS, 2, 400),
        (NotFoundError, ErrorKind.NOT_FOUND, 3, 404),
        (StateError, ErrorKind.STATE_ERROR, 4, 422),
        (InternalError, ErrorKind.INTERNAL, 5, 500),
        (ConcurrentConflictError, ErrorKind.CONCURRENT_CONFLICT, 6, 409),
    ],
)
def test_kinds_map_to_stable_codes(
    error_type: type[WarkError], kind: ErrorKind, exit_code: int, http_status: int
) -> None:
    exc = error_type("boom")
    assert exc.kind is kind
    assert exc.exit_code == exit_code
    assert exc.http_status == http_status
    assert isinstance(error_for_kind(kind.value, "boom"), error_type)
    assert kind_of(exc) is kind


def test_only_conflicts_and_internal_errors_are_retryable() -> None:
    assert {kind for kind in ErrorKind if kind.retryable} == {
        ErrorKind.CONCURRENT_CONFLICT,
        ErrorKind.INTERNAL,
    }


def test_to_dict_carries_suggestion_and_details() -> None:
    exc = StateError(
        "cannot claim WEB-1: status is done",
        suggestion="Reopen it first.",
        details={"ticket": "WEB-1"},
    )
    assert exc.to_dict() == {
        "kind": "state_error",
        "message": "cannot claim WEB-1: status is done",
        "exit_code": 4,
        "suggestion": "Reopen it first.",
        "details": {"ticket": "WEB-1"},
    }
    assert str(exc) == exc.message


def test_unrelated_exceptions_classify_as_general() -> None:
    assert kind_of(RuntimeError("x")) is ErrorKind.GENERAL


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (ClaimConflictError("taken"), ConcurrentConflictError),
        (StaleWriteError("moved"), ConcurrentConflictError),
        (IntegrityViolationError("fk"), InternalError),
        (ValueError("bad key"), InvalidArgsError),
        (NotFoundError("gone"), NotFoundError),
        (InternalError("table has several destinations"), InternalError),
        (StoreError("snapshot could not be rendered"), InternalError),
    ],
)
def test_translate_errors(raised: Exception, expected: type[WarkError]) -> None:
    with pytest.raises(expected) as excinfo:
        with translate_errors("claim"):
            raise raised
    if not isinstance(raised, WarkError):
        assert excinfo.value.__cause__ is raised
        assert excinfo.value.message.startswith("claim")


def test_runtime_errors_are_not_translated() -> None:
    with pytest.raises(RuntimeError):
        with translate_errors("claim"):
            raise RuntimeError("bug")
