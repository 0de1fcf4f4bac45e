"""Background sweep: expire stale claims, then re-check blocked tickets, on an interval."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from wark.claims.manager import ClaimManager, ExpirationResult
from wark.dependencies.resolver import DependencyResolver, ResolveAllResult
from wark.errors import WarkError
from wark.observability.logging import correlation_scope
from wark.persistence.base import StoreError


@dataclass(frozen=True, slots=True)
class SweepReport:
    sweep_id: str
    expiration: ExpirationResult
    resolution: ResolveAllResult | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "sweep_id": self.sweep_id,
            "expiration": self.expiration.to_dict(),
            "resolution": self.resolution.to_dict() if self.resolution is not None else None,
        }


class ClaimSweeper:
    """Runs ``run_once`` every ``interval_seconds`` on a daemon thread until ``stop``.

    Correctness never depends on the sweeper: expiry is a wall-clock comparison and any
    caller may run ``expire_all`` at any time.
    """

    def __init__(
        self,
        claims: ClaimManager,
        *,
        resolver: DependencyResolver | None = None,
        interval_seconds: float = 60.0,
        dry_run: bool = False,
        logger: Any | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._claims = claims
        self._resolver = resolver
        self._interval = float(interval_seconds)
        self._dry_run = dry_run
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._runs = 0
        self._last_report: SweepReport | None = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def runs(self) -> int:
        with self._lock:
            return self._runs

    @property
    def last_report(self) -> SweepReport | None:
        with self._lock:
            return self._last_report

    def run_once(self) -> SweepReport:
        sweep_id = uuid.uuid4().hex[:12]
        with correlation_scope(sweep_id=sweep_id):
            expiration = self._claims.expire_all(dry_run=self._dry_run, cancel=self._stop)
            resolution = None
            if self._resolver is not None and not self._dry_run and not self._stop.is_set():
                resolution = self._resolver.resolve_all()
        report = SweepReport(sweep_id=sweep_id, expiration=expiration, resolution=resolution)
        with self._lock:
            self._runs += 1
            self._last_report = report
        return report

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="wark-sweeper", daemon=True)
        self._thread.start()
        self._logger.info("sweeper_started", interval_seconds=self._interval, dry_run=self._dry_run)

    def stop(self, *, timeout_seconds: float = 5.0) -> None:
        """Signal the loop; an in-flight sweep stops between tickets."""
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout_seconds)
        self._thread = None
        self._logger.info("sweeper_stopped", runs=self.runs)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except (StoreError, WarkError) as exc:
                self._logger.error("sweep_failed", error=str(exc), error_type=type(exc).__name__)
            self._stop.wait(self._interval)


__all__ = ["ClaimSweeper", "SweepReport"]
