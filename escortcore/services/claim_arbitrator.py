"""Claim arbitrator: hands a paid job to exactly one provider.

Three entry modes share one claim primitive:
* ``manual_assign``: an operator picks the provider.
* ``race_claim``: providers grab jobs from the open pool, first wins.
* ``auto_assign``: the scorer picks the best eligible provider (sweep).

The database is the only arbiter. The claim is a single conditional UPDATE
on the job (``status = paid AND provider_id IS NULL``); a loser sees zero
affected rows and reports CONFLICT without retrying. The provider's daily
counter is bumped with its own conditional UPDATE in the same transaction so
a full quota rolls the whole claim back.

Failures come back as ``ClaimResult`` values. Notifications are sent only
after commit and never affect the outcome.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from escortcore.errors import ConflictError, NotFoundError, PolicyViolationError
from escortcore.models.db.enums import AssignMethod, JobStatus, OperatorType, WorkStatus
from escortcore.models.db.job_logs import JobLog
from escortcore.models.db.jobs import Job
from escortcore.models.db.providers import Provider, provider_venues
from escortcore.services.eligibility import check_provider, eligible_candidates, is_familiar
from escortcore.services.notifications import Notifier, notify_safely
from escortcore.services.scoring import (
    CandidateScore,
    DispatchConfig,
    customer_priority_bonus,
    rank_candidates,
    score_candidate,
)
from escortcore.utils import get_logger, log_business_event
from escortcore.utils.time import utc_now

logger = get_logger(__name__)


class ClaimReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    POLICY_VIOLATION = "policy_violation"
    NO_ELIGIBLE_PROVIDERS = "no_eligible_providers"


_USER_MESSAGES = {
    ClaimReason.NOT_FOUND: "Job or provider not found",
    ClaimReason.CONFLICT: "This job was just taken",
    ClaimReason.POLICY_VIOLATION: "Provider cannot take this job",
    ClaimReason.NO_ELIGIBLE_PROVIDERS: "No eligible provider available",
}

_LOG_ACTIONS = {
    AssignMethod.MANUAL: ("manual_assign", OperatorType.OPERATOR),
    AssignMethod.RACE: ("race_claim", OperatorType.PROVIDER),
    AssignMethod.AUTO: ("auto_assign", OperatorType.SYSTEM),
    AssignMethod.PRESELECTED: ("preselected_assign", OperatorType.CUSTOMER),
}


@dataclass(frozen=True)
class ClaimResult:
    job_id: int
    provider_id: int | None
    claimed: bool
    reason: ClaimReason | None = None
    reason_code: str | None = None
    detail: str | None = None
    score: CandidateScore | None = None

    @property
    def message(self) -> str:
        if self.claimed:
            return "Job assigned"
        return _USER_MESSAGES.get(self.reason, "Claim failed") if self.reason else "Claim failed"

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "provider_id": self.provider_id,
            "claimed": self.claimed,
            "reason": self.reason.value if self.reason else None,
            "reason_code": self.reason_code,
            "detail": self.detail,
            "message": self.message,
            "score": self.score.as_dict() if self.score else None,
        }


class ClaimArbitrator:
    def __init__(self, notifier: Notifier | None = None, config: DispatchConfig | None = None) -> None:
        self.notifier = notifier
        self.config = config or DispatchConfig.from_settings()

    # ------------------------------------------------------------------ #
    # Claim primitive
    # ------------------------------------------------------------------ #
    def attempt_claim(
        self,
        session: Session,
        job_id: int,
        provider_id: int,
        method: AssignMethod,
        *,
        operator_id: int | None = None,
        scoring: CandidateScore | None = None,
    ) -> ClaimResult:
        try:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
            provider = session.get(Provider, provider_id)
            if provider is None:
                raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)
            if job.status != JobStatus.PAID or job.provider_id is not None:
                raise ConflictError("Job is no longer open", job_id=job_id, status=job.status.value)

            check_provider(
                session,
                provider,
                job,
                config=self.config,
                enforce_rating_floor=method == AssignMethod.AUTO,
            )
            if method != AssignMethod.AUTO and self.config.enforce_venue_familiarity_on_claim:
                self._check_venue(session, provider, job)

            customer_id = job.customer_id
            provider_name = provider.name
            self._claim(session, job, provider, method, operator_id=operator_id, scoring=scoring)
            session.commit()
        except NotFoundError as e:
            session.rollback()
            return ClaimResult(job_id=job_id, provider_id=provider_id, claimed=False, reason=ClaimReason.NOT_FOUND, detail=e.message)
        except ConflictError as e:
            session.rollback()
            logger.info("Claim lost", job_id=job_id, provider_id=provider_id, method=method.value)
            return ClaimResult(job_id=job_id, provider_id=provider_id, claimed=False, reason=ClaimReason.CONFLICT, detail=e.message)
        except PolicyViolationError as e:
            session.rollback()
            logger.info("Claim refused", job_id=job_id, provider_id=provider_id, reason_code=e.reason_code)
            return ClaimResult(
                job_id=job_id,
                provider_id=provider_id,
                claimed=False,
                reason=ClaimReason.POLICY_VIOLATION,
                reason_code=e.reason_code,
                detail=e.message,
            )
        except Exception:
            session.rollback()
            raise

        log_business_event(
            "job_claimed",
            {"method": method.value, "score": round(scoring.score, 2) if scoring else None},
            job_id=job_id,
            provider_id=provider_id,
        )
        notify_safely(self.notifier, "job_assigned", provider_id, "provider", {"job_id": job_id})
        notify_safely(
            self.notifier,
            "provider_assigned",
            customer_id,
            "customer",
            {"job_id": job_id, "provider_id": provider_id, "provider_name": provider_name},
        )
        return ClaimResult(job_id=job_id, provider_id=provider_id, claimed=True, score=scoring)

    def _check_venue(self, session: Session, provider: Provider, job: Job) -> None:
        if job.venue_id is None or is_familiar(provider, job):
            return
        familiar_count = session.execute(
            select(func.count()).select_from(provider_venues).where(provider_venues.c.venue_id == job.venue_id)
        ).scalar_one()
        if familiar_count:
            raise PolicyViolationError(
                "Provider is not familiar with the venue",
                "not_familiar_with_venue",
                provider_id=provider.id,
                job_id=job.id,
                venue_id=job.venue_id,
            )

    def _claim(
        self,
        session: Session,
        job: Job,
        provider: Provider,
        method: AssignMethod,
        *,
        operator_id: int | None,
        scoring: CandidateScore | None,
    ) -> None:
        now = utc_now()
        snapshot = {
            "name": provider.name,
            "tier": provider.tier_code,
            "rating": str(provider.rating) if provider.rating is not None else None,
        }
        claimed = session.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JobStatus.PAID, Job.provider_id.is_(None))
            .values(
                status=JobStatus.ASSIGNED,
                provider_id=provider.id,
                assign_method=method,
                assigned_at=now,
                provider_snapshot=snapshot,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise ConflictError("This job was just taken", job_id=job.id)

        counted = session.execute(
            update(Provider)
            .where(Provider.id == provider.id, Provider.daily_claimed < Provider.daily_quota)
            .values(
                daily_claimed=Provider.daily_claimed + 1,
                total_jobs=Provider.total_jobs + 1,
                last_active_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            raise PolicyViolationError("Daily job limit reached", "daily_quota_reached", provider_id=provider.id, job_id=job.id)

        action, operator_type = _LOG_ACTIONS[method]
        remark = f"Assigned to {provider.name}"
        if scoring is not None:
            remark += f" (score {scoring.score:.2f})"
        session.add(
            JobLog(
                job_id=job.id,
                action=action,
                from_status=JobStatus.PAID,
                to_status=JobStatus.ASSIGNED,
                operator_type=operator_type,
                operator_id=operator_id if operator_id is not None else (provider.id if method == AssignMethod.RACE else None),
                remark=remark,
                extra={"method": method.value, "score": scoring.as_dict() if scoring else None},
            )
        )
        session.flush()

    # ------------------------------------------------------------------ #
    # Entry modes
    # ------------------------------------------------------------------ #
    def manual_assign(self, session: Session, job_id: int, provider_id: int, operator_id: int | None = None) -> ClaimResult:
        return self.attempt_claim(session, job_id, provider_id, AssignMethod.MANUAL, operator_id=operator_id)

    def race_claim(self, session: Session, job_id: int, provider_id: int) -> ClaimResult:
        return self.attempt_claim(session, job_id, provider_id, AssignMethod.RACE)

    def _rank(self, session: Session, job: Job) -> list[CandidateScore]:
        bonus = customer_priority_bonus(session, job.customer_id, self.config)
        candidates = eligible_candidates(session, job, self.config)
        return rank_candidates(score_candidate(p, job, self.config, bonus=bonus) for p in candidates)

    def auto_assign(self, session: Session, job_id: int) -> ClaimResult:
        """Score eligible providers and claim the job for the best one."""
        job = session.get(Job, job_id)
        if job is None:
            return ClaimResult(job_id=job_id, provider_id=None, claimed=False, reason=ClaimReason.NOT_FOUND, detail=f"Job {job_id} not found")
        if job.status != JobStatus.PAID or job.provider_id is not None:
            return ClaimResult(job_id=job_id, provider_id=job.provider_id, claimed=False, reason=ClaimReason.CONFLICT, detail="Job is no longer open")

        ranked = self._rank(session, job)
        if not ranked:
            logger.warning("No eligible provider for job", job_id=job_id)
            return ClaimResult(job_id=job_id, provider_id=None, claimed=False, reason=ClaimReason.NO_ELIGIBLE_PROVIDERS)
        best = ranked[0]
        return self.attempt_claim(session, job_id, best.provider_id, AssignMethod.AUTO, scoring=best)

    def recommend(self, session: Session, job_id: int, limit: int | None = None) -> list[CandidateScore]:
        """Ranked preview of what ``auto_assign`` would pick. Read-only."""
        job = session.get(Job, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
        ranked = self._rank(session, job)
        return ranked[: limit if limit is not None else self.config.recommend_limit]

    def list_pool(
        self,
        session: Session,
        venue_id: int | None = None,
        limit: int | None = None,
        provider_id: int | None = None,
    ) -> list[Job]:
        """Open paid jobs providers can race for, newest first.

        When ``provider_id`` is given the pool is empty unless that provider
        is currently accepting work.
        """
        if provider_id is not None:
            provider = session.get(Provider, provider_id)
            if provider is None:
                raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)
            if provider.work_status != WorkStatus.WORKING:
                return []
        stmt = select(Job).where(Job.status == JobStatus.PAID, Job.provider_id.is_(None))
        if venue_id is not None:
            stmt = stmt.where(Job.venue_id == venue_id)
        stmt = stmt.order_by(Job.paid_at.desc(), Job.id.desc()).limit(limit if limit is not None else self.config.pool_limit)
        return list(session.execute(stmt).scalars().all())


__all__ = ["ClaimArbitrator", "ClaimReason", "ClaimResult"]
