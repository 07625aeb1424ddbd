"""Provider eligibility rules shared by every claim mode.

A provider may take a job when they are active, accepting work, under their
daily quota and free for the job's time slot. Auto-assignment additionally
applies the rating floor and prefers providers familiar with the job's venue.
"""
from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from escortcore.errors import PolicyViolationError
from escortcore.models.db.enums import ACTIVE_JOB_STATUSES, ProviderStatus, WorkStatus
from escortcore.models.db.jobs import Job
from escortcore.models.db.providers import Provider
from escortcore.services.scoring import DispatchConfig
from escortcore.utils import get_logger
from escortcore.utils.time import minute_range, ranges_overlap

logger = get_logger(__name__)


def _busy_slots(session: Session, provider_ids: list[int], job: Job) -> dict[int, list[tuple[int, int]]]:
    """Minute ranges already held by each provider on the job's date."""
    if not provider_ids:
        return {}
    rows = session.execute(
        select(Job.provider_id, Job.scheduled_time, Job.duration_minutes).where(
            Job.provider_id.in_(provider_ids),
            Job.scheduled_date == job.scheduled_date,
            Job.status.in_(list(ACTIVE_JOB_STATUSES)),
            Job.id != job.id,
        )
    ).all()
    slots: dict[int, list[tuple[int, int]]] = defaultdict(list)
    for provider_id, scheduled_time, duration in rows:
        slots[provider_id].append(minute_range(scheduled_time, duration))
    return slots


def has_time_conflict(session: Session, provider_id: int, job: Job) -> bool:
    wanted = minute_range(job.scheduled_time, job.duration_minutes)
    return any(ranges_overlap(wanted, held) for held in _busy_slots(session, [provider_id], job).get(provider_id, []))


def is_familiar(provider: Provider, job: Job) -> bool:
    return job.venue_id is not None and any(v.id == job.venue_id for v in provider.venues)


def check_provider(
    session: Session,
    provider: Provider,
    job: Job,
    *,
    config: DispatchConfig,
    enforce_rating_floor: bool = False,
) -> None:
    """Raise ``PolicyViolationError`` naming the first rule the provider fails."""
    ctx = {"provider_id": provider.id, "job_id": job.id}
    if provider.status != ProviderStatus.ACTIVE:
        raise PolicyViolationError("Provider account is not active", "inactive", **ctx)
    if provider.work_status != WorkStatus.WORKING:
        raise PolicyViolationError("Provider is not accepting work", "not_accepting_work", **ctx)
    quota = provider.daily_quota if provider.daily_quota is not None else config.default_daily_quota
    if (provider.daily_claimed or 0) >= quota:
        raise PolicyViolationError("Daily job limit reached", "daily_quota_reached", quota=quota, **ctx)
    if has_time_conflict(session, provider.id, job):
        raise PolicyViolationError("Provider already has a job in this time slot", "time_conflict", **ctx)
    if enforce_rating_floor and float(provider.rating or 0) < config.min_rating:
        raise PolicyViolationError("Provider rating below the dispatch floor", "below_rating_floor", rating=provider.rating, **ctx)


def eligible_candidates(session: Session, job: Job, config: DispatchConfig) -> list[Provider]:
    """Providers that auto-assignment may consider for ``job``.

    When the job names a venue and some eligible providers know it, only
    those are returned; otherwise everyone eligible is. The rating floor is
    applied after that narrowing.
    """
    providers = list(
        session.execute(
            select(Provider)
            .options(selectinload(Provider.venues), selectinload(Provider.tier))
            .where(
                Provider.status == ProviderStatus.ACTIVE,
                Provider.work_status == WorkStatus.WORKING,
                Provider.daily_claimed < Provider.daily_quota,
            )
            .order_by(Provider.id)
        ).scalars().all()
    )
    wanted = minute_range(job.scheduled_time, job.duration_minutes)
    busy = _busy_slots(session, [p.id for p in providers], job)
    free = [p for p in providers if not any(ranges_overlap(wanted, held) for held in busy.get(p.id, []))]

    if job.venue_id is not None:
        familiar = [p for p in free if is_familiar(p, job)]
        if familiar:
            free = familiar

    eligible = [p for p in free if float(p.rating or 0) >= config.min_rating]
    logger.debug(
        "Eligible candidates computed",
        job_id=job.id,
        considered=len(providers),
        free=len(free),
        eligible=len(eligible),
    )
    return eligible


__all__ = ["has_time_conflict", "is_familiar", "check_provider", "eligible_candidates"]
