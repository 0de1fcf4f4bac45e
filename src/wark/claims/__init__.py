"""Lease-based claims: acquire, release, expire, and the periodic sweep."""

from __future__ import annotations

from wark.claims.manager import ClaimManager, ExpirationItem, ExpirationResult
from wark.claims.sweeper import ClaimSweeper, SweepReport

__all__ = ["ClaimManager", "ClaimSweeper", "ExpirationItem", "ExpirationResult", "SweepReport"]
