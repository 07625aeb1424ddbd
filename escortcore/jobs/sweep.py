"""Sweep scheduler: auto-assigns paid jobs nobody claimed within the grace period.

Every ``SWEEP_SETTINGS['interval_seconds']`` the scheduler selects up to
``batch_size`` paid, unclaimed jobs whose ``paid_at`` is older than
``grace_minutes`` (oldest first) and runs ``ClaimArbitrator.auto_assign`` on
each in its own session. One job failing never stops the batch.

The same thread resets providers' daily claim counters at the configured hour.
Runs never overlap: a tick that finds the previous run still going is skipped.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escortcore.config import SWEEP_SETTINGS
from escortcore.models.db.enums import JobStatus
from escortcore.models.db.jobs import Job
from escortcore.models.db.providers import Provider
from escortcore.services.claim_arbitrator import ClaimArbitrator
from escortcore.utils import get_logger, log_performance
from escortcore.utils.time import next_daily_boundary, utc_now

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class SweepReport:
    processed: int = 0
    assigned: int = 0
    failed: int = 0
    skipped: bool = False
    outcomes: dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "assigned": self.assigned,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def overdue_job_ids(session: Session, *, now: datetime, grace_minutes: int, batch_size: int) -> list[int]:
    cutoff = now - timedelta(minutes=grace_minutes)
    stmt = (
        select(Job.id)
        .where(
            Job.status == JobStatus.PAID,
            Job.provider_id.is_(None),
            Job.paid_at.is_not(None),
            Job.paid_at < cutoff,
        )
        .order_by(Job.paid_at.asc(), Job.id.asc())
        .limit(batch_size)
    )
    return list(session.execute(stmt).scalars().all())


def run_sweep(
    session_factory: SessionFactory,
    arbitrator: ClaimArbitrator,
    *,
    now: datetime | None = None,
    grace_minutes: int | None = None,
    batch_size: int | None = None,
) -> SweepReport:
    now = now or utc_now()
    grace = int(grace_minutes if grace_minutes is not None else SWEEP_SETTINGS.get("grace_minutes", 30))
    batch = int(batch_size if batch_size is not None else SWEEP_SETTINGS.get("batch_size", 50))
    started = time.perf_counter()

    session = session_factory()
    try:
        job_ids = overdue_job_ids(session, now=now, grace_minutes=grace, batch_size=batch)
    finally:
        session.close()

    report = SweepReport(processed=len(job_ids))
    for job_id in job_ids:
        session = session_factory()
        try:
            result = arbitrator.auto_assign(session, job_id)
            if result.claimed:
                report.assigned += 1
                report.outcomes[job_id] = "assigned"
            else:
                report.outcomes[job_id] = result.reason.value if result.reason else "not_assigned"
        except Exception as e:
            report.failed += 1
            report.outcomes[job_id] = "error"
            logger.error("Auto-assign failed during sweep", job_id=job_id, error=str(e), exc_info=True)
        finally:
            session.close()

    duration_ms = (time.perf_counter() - started) * 1000
    log_performance("dispatch_sweep", round(duration_ms, 2), report.as_dict())
    logger.info("Sweep finished", **report.as_dict())
    return report


def reset_daily_quotas(session: Session) -> int:
    """Zero every provider's daily claim counter. Returns rows touched."""
    result = session.execute(
        update(Provider).where(Provider.daily_claimed > 0).values(daily_claimed=0).execution_options(synchronize_session=False)
    )
    session.commit()
    logger.info("Daily quotas reset", providers=result.rowcount)
    return result.rowcount


class SweepScheduler:
    def __init__(
        self,
        session_factory: SessionFactory,
        arbitrator: ClaimArbitrator,
        *,
        interval_seconds: float | None = None,
        daily_reset_hour: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.arbitrator = arbitrator
        self.interval_seconds = float(interval_seconds if interval_seconds is not None else SWEEP_SETTINGS.get("interval_seconds", 300))
        self.daily_reset_hour = int(daily_reset_hour if daily_reset_hour is not None else SWEEP_SETTINGS.get("daily_reset_hour", 0))
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_reset = next_daily_boundary(utc_now().astimezone(), self.daily_reset_hour)
        self.last_report: SweepReport | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sweep-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sweep scheduler started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        logger.info("Sweep scheduler stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout=timeout)

    def tick(self, now: datetime | None = None) -> SweepReport:
        """One scheduler step: daily reset if due, then a sweep unless one is running."""
        now = now or utc_now()
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous sweep still running, skipping tick")
            return SweepReport(skipped=True)
        try:
            if now >= self._next_reset:
                session = self.session_factory()
                try:
                    reset_daily_quotas(session)
                finally:
                    session.close()
                self._next_reset = next_daily_boundary(now.astimezone(), self.daily_reset_hour)
            self.last_report = run_sweep(self.session_factory, self.arbitrator, now=now)
            return self.last_report
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.tick()
            except Exception as e:  # pragma: no cover - keep the thread alive
                logger.error("Sweep tick failed", error=str(e), exc_info=True)


__all__ = ["SweepReport", "overdue_job_ids", "run_sweep", "reset_daily_quotas", "SweepScheduler"]
