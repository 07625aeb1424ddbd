"""
Pydantic schemas for settlement, clawback and wallet inspection.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict

from escortcore.models.db.enums import DebtStatus, TransactionType

class ClawbackRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class WalletTransactionRead(BaseModel):
    id: int
    type: TransactionType
    amount: Decimal
    balance_after: Decimal
    job_id: Optional[int]
    debt_id: Optional[int]
    title: str
    remark: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class WalletDebtRead(BaseModel):
    id: int
    job_id: int
    original_amount: Decimal
    remaining_amount: Decimal
    status: DebtStatus
    reason: Optional[str]
    deductions: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime]
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class WalletSummary(BaseModel):
    wallet_id: int
    provider_id: int
    balance: Decimal
    frozen_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    outstanding_debt: Decimal
    pending_debts: List[WalletDebtRead]
    recent_transactions: List[WalletTransactionRead]

class LedgerCheckRead(BaseModel):
    wallet_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    last_balance_after: Optional[Decimal]
    consistent: bool
