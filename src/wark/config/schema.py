"""
wark — configuration schema and validation.

File: src/wark/config/schema.py
Last updated: 2026-10-18

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction of sensitive-looking keys for dumps.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Collect every issue before failing; never stop at the first one.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from wark.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CLAIM_DURATION_MINUTES,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STATE_DB,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    MAX_CLAIM_DURATION_MINUTES,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("ci", "lenient")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = ("secret", "token", "password", "api_key")

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_db"),
    ("paths", "log_dir"),
)

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "claims",
    "sweep",
    "dependencies",
    "database",
    "paths",
    "observability",
)


class MetaConfig(TypedDict):
    schema_version: int


class ClaimsConfig(TypedDict):
    default_duration_minutes: int
    max_retries: int


class SweepConfig(TypedDict):
    enabled: bool
    interval_seconds: int
    dry_run: bool


class DependenciesConfig(TypedDict):
    auto_accept_parent: bool
    allow_parent_completion_with_failed_children: bool
    flag_dependents_on_failed_prerequisite: bool


class DatabaseConfig(TypedDict):
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int


class PathsConfig(TypedDict):
    state_db: str
    log_dir: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_file: bool
    log_to_stderr: bool
    redact_keys: list[str]


class ProfileOverlay(TypedDict, total=False):
    claims: dict[str, object]
    sweep: dict[str, object]
    dependencies: dict[str, object]
    database: dict[str, object]
    paths: dict[str, object]
    observability: dict[str, object]


class WarkConfig(TypedDict):
    meta: MetaConfig
    claims: ClaimsConfig
    sweep: SweepConfig
    dependencies: DependenciesConfig
    database: DatabaseConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[WarkConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "claims": {
        "default_duration_minutes": DEFAULT_CLAIM_DURATION_MINUTES,
        "max_retries": DEFAULT_MAX_RETRIES,
    },
    "sweep": {
        "enabled": True,
        "interval_seconds": DEFAULT_SWEEP_INTERVAL_SECONDS,
        "dry_run": False,
    },
    "dependencies": {
        "auto_accept_parent": False,
        "allow_parent_completion_with_failed_children": False,
        "flag_dependents_on_failed_prerequisite": True,
    },
    "database": {
        "busy_timeout_ms": 5000,
        "busy_retry_limit": 4,
        "busy_retry_backoff_ms": 25,
    },
    "paths": {
        "state_db": DEFAULT_STATE_DB.as_posix(),
        "log_dir": DEFAULT_LOG_DIR.as_posix(),
    },
    "observability": {
        "log_level": "INFO",
        "log_to_file": True,
        "log_to_stderr": False,
        "redact_keys": [],
    },
    "profiles": {
        "ci": {
            "sweep": {"enabled": False},
            "observability": {"log_to_file": False, "log_to_stderr": True},
        },
        "lenient": {
            "dependencies": {"allow_parent_completion_with_failed_children": True},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> WarkConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade wark.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade wark"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized

    selected = profile.strip()
    profiles_raw = materialized.get("profiles")
    overlay_raw = profiles_raw.get(selected) if isinstance(profiles_raw, Mapping) else None
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw), active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues, partial=False)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a deterministic redacted representation for logs and ``wark config``."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {*_SECTIONS, "profiles"}, path, issues)
    if not partial:
        _require_keys(payload, set(_SECTIONS), path, issues)

    out: dict[str, Any] = {}
    for section in _SECTIONS:
        _section(
            payload,
            key=section,
            path=path,
            issues=issues,
            validator=lambda obj, section_path, name=section: _VALIDATORS[name](
                obj, section_path, issues, partial=partial
            ),
            out=out,
        )

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_path = _join(path, "profiles")
        profiles_obj = _as_object(profiles_raw, profiles_path, issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, profiles_path, issues)

    sweep = out.get("sweep")
    claims = out.get("claims")
    if isinstance(sweep, Mapping) and isinstance(claims, Mapping):
        interval = sweep.get("interval_seconds")
        duration = claims.get("default_duration_minutes")
        if isinstance(interval, int) and isinstance(duration, int) and interval > duration * 60:
            issues.add(
                _join(path, "sweep.interval_seconds"),
                "must not exceed claims.default_duration_minutes; leases would outlive sweeps",
            )
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    path: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_path = _join(path, key)
    section_obj = _as_object(raw, section_path, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, section_path)


def _validate_meta(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_claims(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"default_duration_minutes", "max_retries"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "default_duration_minutes" in payload:
        key_path = _join(path, "default_duration_minutes")
        parsed_duration = _as_int(payload["default_duration_minutes"], key_path, issues, minimum=1)
        if parsed_duration is not None:
            if parsed_duration > MAX_CLAIM_DURATION_MINUTES:
                issues.add(key_path, f"must be <= {MAX_CLAIM_DURATION_MINUTES}")
            else:
                out["default_duration_minutes"] = parsed_duration

    if "max_retries" in payload:
        parsed_retries = _as_int(payload["max_retries"], _join(path, "max_retries"), issues, minimum=1)
        if parsed_retries is not None:
            out["max_retries"] = parsed_retries
    return out


def _validate_sweep(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"enabled", "interval_seconds", "dry_run"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("enabled", "dry_run"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    if "interval_seconds" in payload:
        parsed_interval = _as_int(
            payload["interval_seconds"], _join(path, "interval_seconds"), issues, minimum=1
        )
        if parsed_interval is not None:
            out["interval_seconds"] = parsed_interval
    return out


def _validate_dependencies(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "auto_accept_parent",
        "allow_parent_completion_with_failed_children",
        "flag_dependents_on_failed_prerequisite",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_bool(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_database(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    minimums = {"busy_timeout_ms": 0, "busy_retry_limit": 0, "busy_retry_backoff_ms": 1}
    _reject_unknown_keys(payload, set(minimums), path, issues)
    if not partial:
        _require_keys(payload, set(minimums), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(minimums):
        if key in payload:
            parsed = _as_int(payload[key], _join(path, key), issues, minimum=minimums[key])
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_paths(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"state_db", "log_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_to_file", "log_to_stderr", "redact_keys"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_level = _as_enum(
            payload["log_level"], _join(path, "log_level"), issues, allowed_values=_LOG_LEVELS
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level

    for key in ("log_to_file", "log_to_stderr"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag

    if "redact_keys" in payload:
        raw_keys = payload["redact_keys"]
        keys_path = _join(path, "redact_keys")
        if not isinstance(raw_keys, (list, tuple)):
            issues.add(keys_path, f"expected list of strings, got {type(raw_keys).__name__}")
        else:
            parsed_keys = [
                _as_str(item, f"{keys_path}[{index}]", issues) for index, item in enumerate(raw_keys)
            ]
            out["redact_keys"] = [item for item in parsed_keys if item is not None]
    return out


_VALIDATORS: Final[dict[str, Callable[..., dict[str, Any]]]] = {
    "meta": _validate_meta,
    "claims": _validate_claims,
    "sweep": _validate_sweep,
    "dependencies": _validate_dependencies,
    "database": _validate_database,
    "paths": _validate_paths,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue

        overlay_sections = set(_SECTIONS) - {"meta"}
        _reject_unknown_keys(profile_obj, overlay_sections, profile_path, issues)
        overlay: dict[str, Any] = {}
        for section in sorted(overlay_sections):
            _section(
                profile_obj,
                key=section,
                path=profile_path,
                issues=issues,
                validator=lambda obj, section_path, name=section: _VALIDATORS[name](
                    obj, section_path, issues, partial=True
                ),
                out=overlay,
            )
        out[profile_name] = overlay
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _is_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ProfileOverlay",
    "WarkConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
