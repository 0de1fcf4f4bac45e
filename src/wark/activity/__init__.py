"""Append-only audit trail of ticket state changes."""

from __future__ import annotations

from wark.activity.recorder import ActivityRecorder

__all__ = ["ActivityRecorder"]
