"""Debt tracker: clawback shortfalls recovered FIFO from future commissions.

A debt is opened only by the clawback path and paid down only by the
settlement credit path. ``remaining_amount`` only decreases and a debt turns
``completed`` exactly when it reaches zero; it never reopens.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from escortcore.errors import InvariantViolationError
from escortcore.models.db.enums import DebtStatus
from escortcore.models.db.wallets import Wallet, WalletDebt
from escortcore.utils import get_logger
from escortcore.utils.money import ZERO, to_money
from escortcore.utils.time import utc_now

logger = get_logger(__name__)


def pending_debts(session: Session, wallet_id: int, *, for_update: bool = True) -> list[WalletDebt]:
    """Pending debts for a wallet, oldest first."""
    stmt = (
        select(WalletDebt)
        .where(WalletDebt.wallet_id == wallet_id, WalletDebt.status == DebtStatus.PENDING)
        .order_by(WalletDebt.created_at, WalletDebt.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return list(session.execute(stmt).scalars().all())


def outstanding_total(session: Session, wallet_id: int) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(WalletDebt.remaining_amount), 0)).where(
            WalletDebt.wallet_id == wallet_id, WalletDebt.status == DebtStatus.PENDING
        )
    ).scalar_one()
    return to_money(total)


def plan_offsets(debts: Iterable[WalletDebt], pool: Decimal) -> list[tuple[WalletDebt, Decimal]]:
    """Walk debts in the given order taking as much of ``pool`` as each needs.

    Pure: returns (debt, amount) pairs without touching the debts.
    """
    remaining_pool = to_money(pool)
    plan: list[tuple[WalletDebt, Decimal]] = []
    for debt in debts:
        if remaining_pool <= ZERO:
            break
        owed = to_money(debt.remaining_amount)
        if owed <= ZERO:
            continue
        take = min(remaining_pool, owed)
        plan.append((debt, take))
        remaining_pool -= take
    return plan


def open_debt(
    session: Session,
    wallet: Wallet,
    *,
    job_id: int,
    amount: Decimal,
    reason: str | None = None,
) -> WalletDebt:
    amount = to_money(amount)
    if amount <= ZERO:
        raise InvariantViolationError("Debt amount must be positive", wallet_id=wallet.id, job_id=job_id, amount=amount)
    debt = WalletDebt(
        wallet_id=wallet.id,
        job_id=job_id,
        original_amount=amount,
        remaining_amount=amount,
        status=DebtStatus.PENDING,
        reason=reason,
        deductions=[],
    )
    session.add(debt)
    session.flush()
    logger.info("Debt opened", wallet_id=wallet.id, job_id=job_id, debt_id=debt.id, amount=amount)
    return debt


def apply_deduction(debt: WalletDebt, amount: Decimal, *, job_id: int, now: datetime | None = None) -> Decimal:
    """Pay ``amount`` off ``debt``; returns the new remaining amount."""
    amount = to_money(amount)
    if debt.status != DebtStatus.PENDING:
        raise InvariantViolationError("Cannot deduct from a completed debt", debt_id=debt.id)
    remaining = to_money(debt.remaining_amount)
    if amount <= ZERO or amount > remaining:
        raise InvariantViolationError(
            "Debt deduction out of range",
            debt_id=debt.id,
            amount=amount,
            remaining=remaining,
        )
    now = now or utc_now()
    new_remaining = remaining - amount
    # Reassign (not append) so the JSON column is flagged dirty.
    debt.deductions = [
        *(debt.deductions or []),
        {"job_id": job_id, "amount": str(amount), "created_at": now.isoformat()},
    ]
    debt.remaining_amount = new_remaining
    if new_remaining == ZERO:
        debt.status = DebtStatus.COMPLETED
        debt.completed_at = now
    return new_remaining


def deducted_total(debt: WalletDebt) -> Decimal:
    return sum((to_money(d["amount"]) for d in (debt.deductions or [])), ZERO)


__all__ = [
    "pending_debts",
    "outstanding_total",
    "plan_offsets",
    "open_debt",
    "apply_deduction",
    "deducted_total",
]
