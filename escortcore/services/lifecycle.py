"""Job state machine.

    pending -> paid -> assigned -> arrived -> in_progress -> completed
    any pre-completion state -> cancelled | refunding -> refunded
    completed -> refunded (reversal, triggers clawback)

``paid -> assigned`` belongs to the claim arbitrator and is not reachable here.
Every other move is a conditional UPDATE on the current status (and on the
provider when one is named), so two racing transitions cannot both apply.
Settlement and clawback run after the transition commits; their failures are
logged and never undo the transition.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from escortcore.errors import ConflictError, NotFoundError
from escortcore.models.db.enums import JobStatus, OperatorType, PRE_COMPLETION_STATUSES, WorkStatus
from escortcore.models.db.job_logs import JobLog
from escortcore.models.db.jobs import Job
from escortcore.models.db.providers import Provider
from escortcore.services.settlement import ClawbackResult, SettlementEngine, SettlementResult
from escortcore.utils import get_logger
from escortcore.utils.time import utc_now

logger = get_logger(__name__)

_CANCELLABLE = tuple(s for s in JobStatus if s in PRE_COMPLETION_STATUSES)


@dataclass(frozen=True)
class Transition:
    action: str
    allowed_from: tuple[JobStatus, ...]
    to_status: JobStatus
    timestamp_field: str | None = None
    provider_work_status: WorkStatus | None = None


TRANSITIONS: dict[str, Transition] = {
    "pay": Transition("pay", (JobStatus.PENDING,), JobStatus.PAID, "paid_at"),
    "arrive": Transition("arrive", (JobStatus.ASSIGNED,), JobStatus.ARRIVED, "arrived_at"),
    "start": Transition("start", (JobStatus.ARRIVED,), JobStatus.IN_PROGRESS, "started_at", WorkStatus.BUSY),
    "complete": Transition("complete", (JobStatus.IN_PROGRESS,), JobStatus.COMPLETED, "completed_at", WorkStatus.WORKING),
    "cancel": Transition("cancel", _CANCELLABLE, JobStatus.CANCELLED, "cancelled_at"),
    "begin_refund": Transition("begin_refund", _CANCELLABLE, JobStatus.REFUNDING),
    "finish_refund": Transition("finish_refund", (JobStatus.REFUNDING,), JobStatus.REFUNDED, "refunded_at"),
    "reverse": Transition("reverse", (JobStatus.COMPLETED,), JobStatus.REFUNDED, "refunded_at"),
}


@dataclass(frozen=True)
class TransitionResult:
    job_id: int
    action: str
    from_status: JobStatus
    to_status: JobStatus
    settlement: SettlementResult | None = None
    clawback: ClawbackResult | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "action": self.action,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
        }
        if self.settlement is not None:
            data["settlement"] = {
                "settled": self.settlement.settled,
                "already_settled": self.settlement.already_settled,
                "reason": self.settlement.reason,
                "net_credit": str(self.settlement.net_credit),
            }
        if self.clawback is not None:
            data["clawback"] = {
                "clawed_back": self.clawback.clawed_back,
                "skipped": self.clawback.skipped,
                "reason": self.clawback.reason,
                "debt_amount": str(self.clawback.debt_amount),
            }
        return data


def transition(
    session: Session,
    job_id: int,
    action: str,
    *,
    provider_id: int | None = None,
    reason: str | None = None,
    operator_type: OperatorType = OperatorType.SYSTEM,
    operator_id: int | None = None,
    settlement: SettlementEngine | None = None,
) -> TransitionResult:
    rule = TRANSITIONS.get(action)
    if rule is None:
        raise ValueError(f"Unknown job action '{action}'")

    job = session.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
    current = job.status
    if current not in rule.allowed_from:
        raise ConflictError(f"Cannot {action} a job that is {current.value}", job_id=job_id, status=current.value)
    if provider_id is not None and job.provider_id != provider_id:
        raise ConflictError("Job is not assigned to this provider", job_id=job_id, provider_id=provider_id)
    job_provider_id = job.provider_id

    now = utc_now()
    values: dict[str, Any] = {"status": rule.to_status}
    if rule.timestamp_field:
        values[rule.timestamp_field] = now
    if action == "cancel" and reason:
        values["cancel_reason"] = reason
    stmt = update(Job).where(Job.id == job_id, Job.status == current)
    if provider_id is not None:
        stmt = stmt.where(Job.provider_id == provider_id)
    try:
        moved = session.execute(stmt.values(**values).execution_options(synchronize_session=False))
        if moved.rowcount != 1:
            raise ConflictError("Job status changed or action not permitted", job_id=job_id, action=action)

        work_status = rule.provider_work_status
        # Abandoning a job mid-service frees the provider again.
        if work_status is None and current == JobStatus.IN_PROGRESS and action in ("cancel", "begin_refund"):
            work_status = WorkStatus.WORKING
        if work_status is not None and job_provider_id is not None:
            session.execute(
                update(Provider)
                .where(Provider.id == job_provider_id)
                .values(work_status=work_status)
                .execution_options(synchronize_session=False)
            )

        session.add(
            JobLog(
                job_id=job_id,
                action=action,
                from_status=current,
                to_status=rule.to_status,
                operator_type=operator_type,
                operator_id=operator_id,
                remark=reason,
            )
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.expire_all()
    logger.info("Job transitioned", job_id=job_id, action=action, from_status=current.value, to_status=rule.to_status.value)

    settled = None
    clawed = None
    if settlement is not None and action == "complete":
        try:
            settled = settlement.settle_on_completion(session, job_id)
            if not settled.settled and not settled.already_settled:
                logger.error("Settlement did not complete", job_id=job_id, provider_id=job_provider_id, reason=settled.reason, detail=settled.detail)
        except Exception as e:
            logger.error("Settlement failed after completion", job_id=job_id, provider_id=job_provider_id, error=str(e), exc_info=True)
    elif settlement is not None and action == "reverse":
        try:
            clawed = settlement.clawback_on_reversal(session, job_id, reason=reason)
            if not clawed.clawed_back and not clawed.skipped:
                logger.error("Clawback did not complete", job_id=job_id, provider_id=job_provider_id, reason=clawed.reason, detail=clawed.detail)
        except Exception as e:
            logger.error("Clawback failed after reversal", job_id=job_id, provider_id=job_provider_id, error=str(e), exc_info=True)

    return TransitionResult(
        job_id=job_id,
        action=action,
        from_status=current,
        to_status=rule.to_status,
        settlement=settled,
        clawback=clawed,
    )


def mark_paid(session: Session, job_id: int) -> TransitionResult:
    return transition(session, job_id, "pay", operator_type=OperatorType.CUSTOMER)


def arrive(session: Session, job_id: int, provider_id: int) -> TransitionResult:
    return transition(session, job_id, "arrive", provider_id=provider_id, operator_type=OperatorType.PROVIDER, operator_id=provider_id)


def start(session: Session, job_id: int, provider_id: int) -> TransitionResult:
    return transition(session, job_id, "start", provider_id=provider_id, operator_type=OperatorType.PROVIDER, operator_id=provider_id)


def complete(session: Session, job_id: int, provider_id: int, settlement: SettlementEngine | None = None) -> TransitionResult:
    return transition(
        session,
        job_id,
        "complete",
        provider_id=provider_id,
        operator_type=OperatorType.PROVIDER,
        operator_id=provider_id,
        settlement=settlement,
    )


def cancel(session: Session, job_id: int, reason: str | None = None) -> TransitionResult:
    return transition(session, job_id, "cancel", reason=reason, operator_type=OperatorType.CUSTOMER)


def begin_refund(session: Session, job_id: int, reason: str | None = None) -> TransitionResult:
    return transition(session, job_id, "begin_refund", reason=reason, operator_type=OperatorType.OPERATOR)


def finish_refund(session: Session, job_id: int) -> TransitionResult:
    return transition(session, job_id, "finish_refund", operator_type=OperatorType.SYSTEM)


def reverse_completed(session: Session, job_id: int, reason: str | None = None, settlement: SettlementEngine | None = None) -> TransitionResult:
    return transition(session, job_id, "reverse", reason=reason, operator_type=OperatorType.OPERATOR, settlement=settlement)


__all__ = [
    "Transition",
    "TRANSITIONS",
    "TransitionResult",
    "transition",
    "mark_paid",
    "arrive",
    "start",
    "complete",
    "cancel",
    "begin_refund",
    "finish_refund",
    "reverse_completed",
]
