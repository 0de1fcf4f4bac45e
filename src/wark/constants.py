"""Stable constants shared across the engine."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 2
SNAPSHOT_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath(".wark")
DEFAULT_STATE_DB: Final[PurePosixPath] = STATE_DIR / "wark.sqlite3"
DEFAULT_LOG_DIR: Final[PurePosixPath] = STATE_DIR / "logs"

# Claim leases.
DEFAULT_CLAIM_DURATION_MINUTES: Final[int] = 60
MAX_CLAIM_DURATION_MINUTES: Final[int] = 7 * 24 * 60
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_SWEEP_INTERVAL_SECONDS: Final[int] = 60

# Status summary.
EXPIRING_SOON_MINUTES: Final[int] = 30
RECENT_ACTIVITY_LIMIT: Final[int] = 5

# Git branch names generated on first claim.
BRANCH_SLUG_MAX_LENGTH: Final[int] = 50

# Priority ranks for deterministic work ordering (lower is picked first).
PRIORITIES: Final[tuple[str, ...]] = ("highest", "high", "medium", "low", "lowest")
PRIORITY_RANK: Final[dict[str, int]] = {
    "highest": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
    "lowest": 5,
}

MAX_PAGE_SIZE: Final[int] = 1000

__all__ = [
    "BRANCH_SLUG_MAX_LENGTH",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CLAIM_DURATION_MINUTES",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_STATE_DB",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "EXPIRING_SOON_MINUTES",
    "MAX_CLAIM_DURATION_MINUTES",
    "MAX_PAGE_SIZE",
    "PRIORITIES",
    "PRIORITY_RANK",
    "RECENT_ACTIVITY_LIMIT",
    "SNAPSHOT_SCHEMA_VERSION",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
]
