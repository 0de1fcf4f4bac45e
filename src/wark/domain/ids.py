"""Canonical ID generation and validation for tickets, projects, and claims."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

from wark.constants import BRANCH_SLUG_MAX_LENGTH

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_ULID_MAX_VALUE: Final[int] = (1 << 128) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

# Stable entity ID prefixes.
PROJECT_ID_PREFIX: Final[str] = "prj"
TICKET_ID_PREFIX: Final[str] = "tkt"
ACTIVITY_ID_PREFIX: Final[str] = "act"
MESSAGE_ID_PREFIX: Final[str] = "msg"
MILESTONE_ID_PREFIX: Final[str] = "mst"
TASK_ID_PREFIX: Final[str] = "tsk"
CLAIM_ID_PREFIX: Final[str] = "claim_"

PROJECT_KEY_PATTERN_DESCRIPTION: Final[str] = "an uppercase letter followed by 1-9 letters/digits"
TICKET_KEY_PATTERN_DESCRIPTION: Final[str] = "PROJ-12"
MILESTONE_KEY_PATTERN_DESCRIPTION: Final[str] = (
    "an uppercase letter followed by up to 19 letters, digits or underscores"
)

_PROJECT_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Z][A-Z0-9]{1,9}$")
_TICKET_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^([A-Z][A-Z0-9]{1,9})-(\d+)$")
_MILESTONE_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Z][A-Z0-9_]{0,19}$")
_CLAIM_ID_RE: Final[re.Pattern[str]] = re.compile(r"^claim_[0-9a-f]{8}$")
_SLUG_SEPARATORS_RE: Final[re.Pattern[str]] = re.compile(r"[\s_\-]+")
_SLUG_DROP_RE: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9\-]")
_SLUG_DASHES_RE: Final[re.Pattern[str]] = re.compile(r"-{2,}")

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes)
    ulid_value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    return _encode_crockford_base32(ulid_value, ULID_LENGTH)


def validate_ulid(s: str) -> None:
    """Validate a ULID and raise ``ValueError`` with precise context on failure."""
    _ = _decode_validated_ulid(s)


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a stable prefixed ID in the form ``<prefix>-<ulid>``."""
    _validate_prefix(prefix)
    return f"{prefix}{_PREFIX_SEPARATOR}{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    """Validate ``<prefix>-<ulid>`` format and enforce ``expected_prefix``."""
    _validate_prefix(expected_prefix)
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")

    expected_lead = f"{expected_prefix}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")

    ulid_part = id_str[len(expected_lead) :]
    try:
        validate_ulid(ulid_part)
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_project_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(PROJECT_ID_PREFIX, timestamp_ms=timestamp_ms)


def generate_ticket_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(TICKET_ID_PREFIX, timestamp_ms=timestamp_ms)


def generate_activity_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(ACTIVITY_ID_PREFIX, timestamp_ms=timestamp_ms)


def generate_message_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(MESSAGE_ID_PREFIX, timestamp_ms=timestamp_ms)


def generate_milestone_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(MILESTONE_ID_PREFIX, timestamp_ms=timestamp_ms)


def generate_task_id(*, timestamp_ms: int | None = None) -> str:
    return generate_prefixed_id(TASK_ID_PREFIX, timestamp_ms=timestamp_ms)


def validate_ticket_id(id_str: str) -> None:
    validate_prefixed_id(id_str, TICKET_ID_PREFIX)


def generate_claim_id(*, randbytes: _RandBytes | None = None) -> str:
    """Generate ``claim_`` followed by 8 lowercase hex characters."""
    provider = secrets.token_bytes if randbytes is None else randbytes
    return f"{CLAIM_ID_PREFIX}{bytes(provider(4)).hex()}"


def validate_claim_id(claim_id: str) -> None:
    if not isinstance(claim_id, str) or _CLAIM_ID_RE.fullmatch(claim_id) is None:
        raise ValueError(f"claim_id must look like claim_0a1b2c3d (got {claim_id!r})")


def normalize_project_key(key: str) -> str:
    """Upper-case and validate a project key such as ``WEBAPP``."""
    if not isinstance(key, str):
        raise ValueError(f"project key must be a string, got {type(key).__name__}")
    normalized = key.strip().upper()
    if _PROJECT_KEY_RE.fullmatch(normalized) is None:
        raise ValueError(
            f"project key must be {PROJECT_KEY_PATTERN_DESCRIPTION} (got {key!r})"
        )
    return normalized


def normalize_milestone_key(key: str) -> str:
    """Upper-case and validate a milestone key such as ``MVP`` or ``V1_0``."""
    if not isinstance(key, str):
        raise ValueError(f"milestone key must be a string, got {type(key).__name__}")
    normalized = key.strip().upper()
    if _MILESTONE_KEY_RE.fullmatch(normalized) is None:
        raise ValueError(
            f"milestone key must be {MILESTONE_KEY_PATTERN_DESCRIPTION} (got {key!r})"
        )
    return normalized


def format_ticket_key(project_key: str, number: int) -> str:
    if isinstance(number, bool) or not isinstance(number, int) or number < 1:
        raise ValueError(f"ticket number must be a positive integer, got {number!r}")
    return f"{normalize_project_key(project_key)}-{number}"


def parse_ticket_key(key: str) -> tuple[str, int]:
    """Split ``PROJ-12`` into ``("PROJ", 12)``; case-insensitive."""
    if not isinstance(key, str):
        raise ValueError(f"ticket key must be a string, got {type(key).__name__}")
    match = _TICKET_KEY_RE.fullmatch(key.strip().upper())
    if match is None:
        raise ValueError(f"ticket key must match {TICKET_KEY_PATTERN_DESCRIPTION} (got {key!r})")
    number = int(match.group(2))
    if number < 1:
        raise ValueError("ticket number must be >= 1")
    return match.group(1), number


def is_ticket_key(value: str) -> bool:
    try:
        parse_ticket_key(value)
    except ValueError:
        return False
    return True


def slugify(title: str, *, max_length: int = BRANCH_SLUG_MAX_LENGTH) -> str:
    """Lower-case alphanumerics joined by single dashes, trimmed to ``max_length``."""
    lowered = _SLUG_SEPARATORS_RE.sub("-", title.lower())
    kept = _SLUG_DASHES_RE.sub("-", _SLUG_DROP_RE.sub("", lowered)).strip("-")
    if len(kept) > max_length:
        kept = kept[:max_length].rstrip("-")
    return kept


def generate_branch_name(project_key: str, number: int, title: str) -> str:
    """Branch name for a claimed ticket, e.g. ``WEB-42-add-login-form``."""
    key = format_ticket_key(project_key, number)
    slug = slugify(title)
    return f"{key}-{slug}" if slug else key


# ------------------------
# Internal helper routines
# ------------------------


def _resolve_timestamp_ms(timestamp_ms: int | None) -> int:
    resolved = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(resolved, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(resolved).__name__}")
    if not 0 <= resolved <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {resolved}"
        )
    return resolved


def _resolve_random_bytes(randbytes: _RandBytes | None) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return as_bytes


def _decode_validated_ulid(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")

    decoded = 0
    for index, char in enumerate(value):
        digit = _DECODE_TABLE.get(char.upper())
        if digit is None:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
        decoded = (decoded << 5) | digit

    if decoded > _ULID_MAX_VALUE:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return decoded


def _encode_crockford_base32(value: int, length: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")

    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_PREFIX_SEPARATOR}'")


__all__ = [
    "ACTIVITY_ID_PREFIX",
    "CLAIM_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "MESSAGE_ID_PREFIX",
    "MILESTONE_ID_PREFIX",
    "PROJECT_ID_PREFIX",
    "TASK_ID_PREFIX",
    "TICKET_ID_PREFIX",
    "ULID_LENGTH",
    "format_ticket_key",
    "generate_activity_id",
    "generate_branch_name",
    "generate_claim_id",
    "generate_message_id",
    "generate_milestone_id",
    "generate_prefixed_id",
    "generate_project_id",
    "generate_task_id",
    "generate_ticket_id",
    "generate_ulid",
    "is_ticket_key",
    "normalize_milestone_key",
    "normalize_project_key",
    "parse_ticket_key",
    "slugify",
    "validate_claim_id",
    "validate_prefixed_id",
    "validate_ticket_id",
    "validate_ulid",
]
