"""Settlement engine: credits commission on completion and claws it back on reversal.

Credit path (``settle_on_completion``), one transaction:
1. Compute the commission split for the assigned provider.
2. Persist it onto the job with a conditional write (``commission_amount IS
   NULL``) so a job is settled at most once.
3. Lock the provider wallet, offset pending debts oldest first.
4. Ledger: +gross income entry, then one negative entry per debt paid down;
   ``total_earned`` grows by the gross amount.
5. Audit ``settle`` job log. Commit.
After commit: distribution hook and ``commission_credited`` notification,
both best-effort.

Clawback path (``clawback_on_reversal``), one transaction:
1. Mark the job clawed back with a conditional write (``clawed_back_at IS
   NULL``) so the commission is reversed at most once.
2. Deduct what the spendable balance covers; open a debt for the shortfall.
3. Audit ``refund_clawback`` job log. Commit, then notify.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escortcore.errors import ConflictError, InvariantViolationError, NotFoundError
from escortcore.models.db.enums import JobStatus, OperatorType, TransactionType
from escortcore.models.db.job_logs import JobLog
from escortcore.models.db.jobs import Job
from escortcore.services.commission import GlobalRateCache, calculate_commission
from escortcore.services.debts import apply_deduction, open_debt, pending_debts, plan_offsets
from escortcore.services.distribution import DistributionNotifier
from escortcore.services.ledger import get_wallet_for_update, post_entry
from escortcore.services.notifications import Notifier, notify_safely
from escortcore.utils import get_logger, log_business_event
from escortcore.utils.money import ZERO, to_money
from escortcore.utils.time import utc_now

logger = get_logger(__name__)

_SOURCE_LABELS = {
    "service": "service config",
    "tier": "tier config",
    "global": "global default",
}

REVERSIBLE_STATUSES = (JobStatus.REFUNDING, JobStatus.REFUNDED)


def _fmt_rate(rate: Decimal) -> str:
    return format(rate.normalize(), "f")


@dataclass(frozen=True)
class SettlementResult:
    job_id: int
    settled: bool
    already_settled: bool = False
    reason: str | None = None
    detail: str | None = None
    commission: dict[str, Any] | None = None
    debt_offset: Decimal = ZERO
    net_credit: Decimal = ZERO
    wallet_id: int | None = None


@dataclass(frozen=True)
class ClawbackResult:
    job_id: int
    clawed_back: bool
    clawed_back_amount: Decimal = ZERO
    debt_created: bool = False
    debt_amount: Decimal = ZERO
    debt_id: int | None = None
    skipped: bool = False
    reason: str | None = None
    detail: str | None = None
    wallet_id: int | None = None


@dataclass
class _Offset:
    debt_id: int
    amount: Decimal
    remaining: Decimal = field(default=ZERO)


def _lock_job(session: Session, job_id: int) -> Job:
    job = session.execute(select(Job).where(Job.id == job_id).with_for_update()).scalar_one_or_none()
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
    return job


class SettlementEngine:
    def __init__(
        self,
        notifier: Notifier | None = None,
        distribution: DistributionNotifier | None = None,
        rate_cache: GlobalRateCache | None = None,
    ) -> None:
        self.notifier = notifier
        self.distribution = distribution
        self.rate_cache = rate_cache or GlobalRateCache()

    # ------------------------------------------------------------------ #
    # Credit path
    # ------------------------------------------------------------------ #
    def settle_on_completion(self, session: Session, job_id: int) -> SettlementResult:
        try:
            job = _lock_job(session, job_id)
            if job.commission_amount is not None:
                self._check_stored_split(job)
                session.rollback()
                return SettlementResult(job_id=job_id, settled=False, already_settled=True, reason="already_settled")
            if job.status != JobStatus.COMPLETED:
                raise ConflictError(f"Job {job_id} is {job.status.value}, not completed", job_id=job_id)
            if job.provider_id is None:
                raise NotFoundError(f"Job {job_id} has no provider", job_id=job_id)

            provider_id = job.provider_id
            paid_amount = to_money(job.paid_amount)
            job_no = job.job_no
            commission = calculate_commission(session, job_id, provider_id, cache=self.rate_cache)
            gross = commission.commission_amount
            now = utc_now()

            written = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.commission_amount.is_(None))
                .values(
                    commission_rate=commission.rate,
                    commission_amount=gross,
                    platform_amount=commission.platform_amount,
                    commission_source=commission.source,
                    settled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if written.rowcount != 1:
                session.rollback()
                return SettlementResult(job_id=job_id, settled=False, already_settled=True, reason="already_settled")

            wallet = get_wallet_for_update(session, provider_id)
            wallet_id = wallet.id
            plan = plan_offsets(pending_debts(session, wallet_id), gross)

            source_label = _SOURCE_LABELS.get(commission.source.value, commission.source.value)
            post_entry(
                session,
                wallet,
                amount=gross,
                type=TransactionType.INCOME,
                title=f"Job income ({_fmt_rate(commission.rate)}% share)",
                remark=f"Source: {source_label}",
                job_id=job_id,
                earned_delta=gross,
            )
            offsets: list[_Offset] = []
            for debt, amount in plan:
                remaining = apply_deduction(debt, amount, job_id=job_id, now=now)
                post_entry(
                    session,
                    wallet,
                    amount=-amount,
                    type=TransactionType.REFUND,
                    title="Debt deduction",
                    remark=f"Deducted from job {job_no} income",
                    job_id=job_id,
                    debt_id=debt.id,
                )
                offsets.append(_Offset(debt_id=debt.id, amount=amount, remaining=remaining))

            debt_offset = sum((o.amount for o in offsets), ZERO)
            net_credit = gross - debt_offset
            remark = f"Settled: {_fmt_rate(commission.rate)}% share, provider credited {net_credit}"
            if debt_offset > ZERO:
                remark += f", debt deducted {debt_offset}"
            session.add(
                JobLog(
                    job_id=job_id,
                    action="settle",
                    from_status=JobStatus.COMPLETED,
                    to_status=JobStatus.COMPLETED,
                    operator_type=OperatorType.SYSTEM,
                    remark=remark,
                    extra={
                        **commission.as_dict(),
                        "debt_offset": str(debt_offset),
                        "net_credit": str(net_credit),
                        "offsets": [{"debt_id": o.debt_id, "amount": str(o.amount), "remaining": str(o.remaining)} for o in offsets],
                    },
                )
            )
            session.commit()
        except NotFoundError as e:
            session.rollback()
            logger.warning("Settlement skipped", job_id=job_id, error=e.message)
            return SettlementResult(job_id=job_id, settled=False, reason="not_found", detail=e.message)
        except ConflictError as e:
            session.rollback()
            return SettlementResult(job_id=job_id, settled=False, reason="conflict", detail=e.message)
        except InvariantViolationError as e:
            session.rollback()
            logger.error("Settlement invariant violated", **{**e.context, "job_id": job_id, "error": e.message})
            raise
        except Exception:
            session.rollback()
            raise

        log_business_event(
            "commission_settled",
            {
                "wallet_id": wallet_id,
                "rate": commission.rate,
                "source": commission.source.value,
                "gross": gross,
                "debt_offset": debt_offset,
                "net_credit": net_credit,
            },
            job_id=job_id,
            provider_id=provider_id,
        )
        self._distribute(job_id, provider_id, paid_amount)
        notify_safely(
            self.notifier,
            "commission_credited",
            provider_id,
            "provider",
            {"job_id": job_id, "amount": str(net_credit), "gross": str(gross), "debt_offset": str(debt_offset)},
        )
        return SettlementResult(
            job_id=job_id,
            settled=True,
            commission=commission.as_dict(),
            debt_offset=debt_offset,
            net_credit=net_credit,
            wallet_id=wallet_id,
        )

    @staticmethod
    def _check_stored_split(job: Job) -> None:
        commission = to_money(job.commission_amount)
        platform = to_money(job.platform_amount)
        paid = to_money(job.paid_amount)
        if commission + platform != paid:
            raise InvariantViolationError(
                f"Job {job.id} stored split does not add up",
                job_id=job.id,
                commission_amount=commission,
                platform_amount=platform,
                paid_amount=paid,
            )

    def _distribute(self, job_id: int, provider_id: int, paid_amount: Decimal) -> None:
        if self.distribution is None:
            return
        try:
            self.distribution.distribute(job_id, provider_id, paid_amount)
        except Exception as e:
            logger.error("Distribution hook failed", job_id=job_id, provider_id=provider_id, error=str(e))

    # ------------------------------------------------------------------ #
    # Clawback path
    # ------------------------------------------------------------------ #
    def clawback_on_reversal(self, session: Session, job_id: int, reason: str | None = None) -> ClawbackResult:
        try:
            job = _lock_job(session, job_id)
            if job.status not in REVERSIBLE_STATUSES:
                raise ConflictError(f"Job {job_id} is {job.status.value}, not being refunded", job_id=job_id)
            amount = to_money(job.commission_amount) if job.commission_amount is not None else None
            if amount is None or amount <= ZERO:
                session.rollback()
                logger.info("Clawback skipped, no commission", job_id=job_id)
                return ClawbackResult(job_id=job_id, clawed_back=False, skipped=True, reason="no_commission")
            if job.provider_id is None:
                raise InvariantViolationError(f"Job {job_id} has commission but no provider", job_id=job_id)

            provider_id = job.provider_id
            job_no = job.job_no
            marked = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.clawed_back_at.is_(None))
                .values(clawed_back_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount != 1:
                raise ConflictError(f"Commission for job {job_id} already clawed back", job_id=job_id)

            wallet = get_wallet_for_update(session, provider_id)
            wallet_id = wallet.id
            available = to_money(wallet.balance)
            deducted = min(available, amount)
            shortfall = amount - deducted

            if deducted > ZERO:
                post_entry(
                    session,
                    wallet,
                    amount=-deducted,
                    type=TransactionType.REFUND,
                    title="Refund clawback" if shortfall == ZERO else "Refund clawback (partial)",
                    remark=reason or f"Job {job_no} refunded, commission clawed back",
                    job_id=job_id,
                    earned_delta=-deducted,
                )
            debt_id = None
            if shortfall > ZERO:
                debt = open_debt(
                    session,
                    wallet,
                    job_id=job_id,
                    amount=shortfall,
                    reason=reason or f"Job {job_no} refunded, balance short of commission",
                )
                debt_id = debt.id

            remark = f"Clawback: deducted {deducted}"
            if shortfall > ZERO:
                remark += f", debt opened {shortfall}"
            session.add(
                JobLog(
                    job_id=job_id,
                    action="refund_clawback",
                    from_status=job.status,
                    to_status=job.status,
                    operator_type=OperatorType.SYSTEM,
                    remark=remark,
                    extra={
                        "commission_amount": str(amount),
                        "deducted": str(deducted),
                        "debt_amount": str(shortfall),
                        "debt_id": debt_id,
                        "reason": reason,
                    },
                )
            )
            session.commit()
        except NotFoundError as e:
            session.rollback()
            logger.warning("Clawback skipped", job_id=job_id, error=e.message)
            return ClawbackResult(job_id=job_id, clawed_back=False, reason="not_found", detail=e.message)
        except ConflictError as e:
            session.rollback()
            return ClawbackResult(job_id=job_id, clawed_back=False, reason="conflict", detail=e.message)
        except InvariantViolationError as e:
            session.rollback()
            logger.error("Clawback invariant violated", **{**e.context, "job_id": job_id, "error": e.message})
            raise
        except Exception:
            session.rollback()
            raise

        log_business_event(
            "commission_clawed_back",
            {"wallet_id": wallet_id, "amount": amount, "deducted": deducted, "debt_amount": shortfall, "debt_id": debt_id},
            job_id=job_id,
            provider_id=provider_id,
        )
        notify_safely(
            self.notifier,
            "commission_clawed_back",
            provider_id,
            "provider",
            {"job_id": job_id, "amount": str(amount), "deducted": str(deducted), "debt_amount": str(shortfall)},
        )
        return ClawbackResult(
            job_id=job_id,
            clawed_back=True,
            clawed_back_amount=deducted,
            debt_created=shortfall > ZERO,
            debt_amount=shortfall,
            debt_id=debt_id,
            wallet_id=wallet_id,
        )


__all__ = ["SettlementEngine", "SettlementResult", "ClawbackResult", "REVERSIBLE_STATUSES"]
