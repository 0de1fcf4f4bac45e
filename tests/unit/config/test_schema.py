"""Config schema validation, merging and redaction."""

from __future__ import annotations

import pytest

from wark.config.schema import (
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def test_defaults_are_valid_and_isolated() -> None:
    config = default_config()
    assert validate_config(config).is_valid

    config["claims"]["max_retries"] = 99
    assert default_config()["claims"]["max_retries"] == 3


def test_sweep_interval_cannot_outlive_claim_duration() -> None:
    config = merge_config(
        default_config(),
        {"claims": {"default_duration_minutes": 1}, "sweep": {"interval_seconds": 61}},
    )

    result = validate_config(config)

    assert not result.is_valid
    assert [issue.path for issue in result.issues] == ["sweep.interval_seconds"]


def test_schema_version_mismatch_reports_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    with pytest.raises(ConfigValidationError, match="upgrade wark"):
        assert_valid_config(config)
    assert "older" in migration_guidance(0)


def test_profile_overlays_are_partial_but_typed() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"Bad Name": {}, "fast": {"sweep": {"interval_seconds": "soon"}}}},
    )

    issues = {issue.path: issue.message for issue in validate_config(config).issues}

    assert "profiles.Bad Name" in issues
    assert issues["profiles.fast.sweep.interval_seconds"] == "expected integer, got str"


def test_apply_profile_overlay_merges_and_revalidates() -> None:
    applied = apply_profile_overlay(default_config(), "ci")
    assert applied["sweep"]["enabled"] is False
    assert applied["sweep"]["interval_seconds"] == 60
    assert apply_profile_overlay(default_config(), None) == default_config()


def test_merge_is_deep_and_does_not_alias() -> None:
    base = {"observability": {"redact_keys": ["a"], "log_level": "INFO"}}
    merged = merge_config(base, {"observability": {"log_level": "DEBUG"}})

    merged["observability"]["redact_keys"].append("b")

    assert merged["observability"]["log_level"] == "DEBUG"
    assert base["observability"]["redact_keys"] == ["a"]


def test_redaction_masks_sensitive_keys() -> None:
    redacted = redact_config(
        {"webhook": {"api_key": "k", "Secret_Value": "s", "url": "https://example.invalid"}}
    )
    assert redacted == {
        "webhook": {
            "Secret_Value": "<redacted>",
            "api_key": "<redacted>",
            "url": "https://example.invalid",
        }
    }
