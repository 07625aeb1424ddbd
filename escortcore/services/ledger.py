"""Wallet ledger: the only code path that changes a wallet balance.

Every balance mutation goes through ``post_entry`` which appends the paired
``WalletTransaction`` in the same session, so a commit either persists both
or neither. Callers own the transaction boundary (commit / rollback).

``replay_balance`` / ``verify_wallet`` rebuild the balance from the ledger in
creation order; they are used by the offline consistency check endpoint and
by tests.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escortcore.errors import InvariantViolationError, NotFoundError
from escortcore.models.db.enums import TransactionType
from escortcore.models.db.wallets import Wallet, WalletTransaction
from escortcore.utils import get_logger
from escortcore.utils.money import ZERO, to_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class LedgerCheck:
    wallet_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    last_balance_after: Decimal | None

    @property
    def consistent(self) -> bool:
        if self.stored_balance != self.replayed_balance:
            return False
        return self.last_balance_after is None or self.last_balance_after == self.stored_balance


def _find_wallet(session: Session, provider_id: int) -> Wallet | None:
    return session.query(Wallet).filter(Wallet.provider_id == provider_id).one_or_none()


def ensure_wallet(session: Session, provider_id: int) -> Wallet:
    """Get or lazily create the provider's wallet (flushes, does not commit).

    The insert runs in a savepoint: losing a creation race to another worker
    rolls back only the insert, never the caller's pending changes.
    """
    wallet = _find_wallet(session, provider_id)
    if wallet is not None:
        return wallet
    wallet = Wallet(
        provider_id=provider_id,
        balance=ZERO,
        frozen_balance=ZERO,
        total_earned=ZERO,
        total_withdrawn=ZERO,
    )
    try:
        with session.begin_nested():
            session.add(wallet)
            session.flush()
    except IntegrityError:
        existing = _find_wallet(session, provider_id)
        if existing is None:
            raise
        logger.info("Wallet created concurrently, reusing it", provider_id=provider_id, wallet_id=existing.id)
        return existing
    logger.info("Wallet created", provider_id=provider_id, wallet_id=wallet.id)
    return wallet


def get_wallet_for_update(session: Session, provider_id: int) -> Wallet:
    """Load the wallet row locked for the rest of the transaction.

    ``FOR UPDATE`` serialises concurrent settlements on PostgreSQL; SQLite
    ignores it and serialises on its database-level write lock instead.
    """
    wallet = session.execute(
        select(Wallet).where(Wallet.provider_id == provider_id).with_for_update()
    ).scalar_one_or_none()
    if wallet is None:
        raise NotFoundError(f"Wallet for provider {provider_id} not found", provider_id=provider_id)
    return wallet


def post_entry(
    session: Session,
    wallet: Wallet,
    *,
    amount: Decimal,
    type: TransactionType,
    title: str,
    job_id: int | None = None,
    debt_id: int | None = None,
    remark: str | None = None,
    earned_delta: Decimal = ZERO,
) -> WalletTransaction:
    """Apply ``amount`` to the balance and append the matching ledger entry.

    ``earned_delta`` adjusts the lifetime ``total_earned`` counter alongside.
    """
    amount = to_money(amount)
    new_balance = to_money(wallet.balance) + amount
    if new_balance < ZERO:
        logger.error(
            "Ledger entry would make balance negative",
            wallet_id=wallet.id,
            balance=wallet.balance,
            amount=amount,
            job_id=job_id,
        )
        raise InvariantViolationError(
            f"Wallet {wallet.id} balance would become negative",
            wallet_id=wallet.id,
            amount=amount,
        )
    new_earned = to_money(wallet.total_earned) + to_money(earned_delta)
    if new_earned < ZERO:
        raise InvariantViolationError(
            f"Wallet {wallet.id} total earned would become negative",
            wallet_id=wallet.id,
            earned_delta=earned_delta,
        )

    wallet.balance = new_balance
    wallet.total_earned = new_earned
    entry = WalletTransaction(
        wallet_id=wallet.id,
        type=type,
        amount=amount,
        balance_after=new_balance,
        job_id=job_id,
        debt_id=debt_id,
        title=title,
        remark=remark,
    )
    session.add(entry)
    # Flush per entry so ids (creation order) follow the mutation order.
    session.flush()
    return entry


def list_transactions(session: Session, wallet_id: int, *, limit: int = 50, offset: int = 0) -> list[WalletTransaction]:
    stmt = (
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet_id)
        .order_by(WalletTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def replay_balance(session: Session, wallet_id: int) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(WalletTransaction.wallet_id == wallet_id)
    ).scalar_one()
    return to_money(total)


def verify_wallet(session: Session, wallet_id: int) -> LedgerCheck:
    """Replay the ledger in creation order and compare with the stored balance."""
    wallet = session.get(Wallet, wallet_id)
    if wallet is None:
        raise NotFoundError(f"Wallet {wallet_id} not found", wallet_id=wallet_id)
    entries = session.execute(
        select(WalletTransaction.amount, WalletTransaction.balance_after)
        .where(WalletTransaction.wallet_id == wallet_id)
        .order_by(WalletTransaction.id)
    ).all()
    running = ZERO
    for amount, _ in entries:
        running += to_money(amount)
    check = LedgerCheck(
        wallet_id=wallet_id,
        stored_balance=to_money(wallet.balance),
        replayed_balance=running,
        transaction_count=len(entries),
        last_balance_after=to_money(entries[-1][1]) if entries else None,
    )
    if not check.consistent:
        logger.error(
            "Ledger replay mismatch",
            wallet_id=wallet_id,
            stored=check.stored_balance,
            replayed=check.replayed_balance,
            last_balance_after=check.last_balance_after,
        )
    return check


__all__ = [
    "LedgerCheck",
    "ensure_wallet",
    "get_wallet_for_update",
    "post_entry",
    "list_transactions",
    "replay_balance",
    "verify_wallet",
]
