from __future__ import annotations
"""SQLAlchemy models for provider wallets, the append-only ledger and outstanding debts."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .providers import Provider
from sqlalchemy.sql import func
from escortcore.database import Base
from escortcore.utils.time import utc_now
from .enums import TransactionType, DebtStatus

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("providers.id"), unique=True, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    # Reserved for in-flight payout requests; never part of the spendable balance
    frozen_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_withdrawn: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=utc_now)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="wallet")
    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction", back_populates="wallet", order_by="WalletTransaction.id"
    )
    debts: Mapped[list["WalletDebt"]] = relationship("WalletDebt", back_populates="wallet", order_by="WalletDebt.id")


class WalletTransaction(Base):
    """Ledger entry. Rows are inserted once and never updated; ``id`` order is creation order."""
    __tablename__ = "wallet_transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)  # signed
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    job_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("jobs.id"), nullable=True, index=True)
    debt_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("wallet_debts.id"), nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    remark: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")


class WalletDebt(Base):
    __tablename__ = "wallet_debts"
    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_debt_remaining_non_negative"),
        CheckConstraint("remaining_amount <= original_amount", name="ck_debt_remaining_le_original"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[DebtStatus] = mapped_column(Enum(DebtStatus), default=DebtStatus.PENDING, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"job_id": int, "amount": "12.34", "created_at": iso8601}, ...]
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="debts")
