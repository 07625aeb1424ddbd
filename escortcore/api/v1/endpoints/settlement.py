"""
Settlement endpoints: settle / claw back a job, wallet summary and ledger verification.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from escortcore.api.deps import get_db, get_container
from escortcore.container import CoreContainer
from escortcore.errors import InvariantViolationError
from escortcore.models.db.wallets import Wallet
from escortcore.models.schemas.base import ResponseBase
from escortcore.models.schemas.settlement import (
    ClawbackRequest,
    LedgerCheckRead,
    WalletDebtRead,
    WalletSummary,
    WalletTransactionRead,
)
from escortcore.services.debts import outstanding_total, pending_debts
from escortcore.services.ledger import list_transactions, verify_wallet
from escortcore.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

_STATUS_BY_REASON = {"not_found": 404, "conflict": 409}

def _get_wallet(db: Session, provider_id: int) -> Wallet:
    wallet = db.query(Wallet).filter(Wallet.provider_id == provider_id).first()
    if not wallet:
        raise HTTPException(status_code=404, detail=f"Wallet for provider {provider_id} not found")
    return wallet

@router.post(
    "/jobs/{job_id}/settle",
    response_model=ResponseBase,
    summary="Credit the commission for a completed job (idempotent)"
)
async def settle_job(
    job_id: int,
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    try:
        result = container.settlement.settle_on_completion(db, job_id)
    except InvariantViolationError as e:
        raise HTTPException(status_code=500, detail=e.message)
    if result.reason in _STATUS_BY_REASON:
        raise HTTPException(status_code=_STATUS_BY_REASON[result.reason], detail=result.detail or result.reason)
    return ResponseBase(
        success=True,
        message="Already settled" if result.already_settled else "Commission settled",
        data={
            "job_id": job_id,
            "settled": result.settled,
            "already_settled": result.already_settled,
            "commission": result.commission,
            "debt_offset": str(result.debt_offset),
            "net_credit": str(result.net_credit),
            "wallet_id": result.wallet_id,
        },
    )

@router.post(
    "/jobs/{job_id}/clawback",
    response_model=ResponseBase,
    summary="Reverse the commission of a refunded job"
)
async def clawback_job(
    job_id: int,
    payload: Optional[ClawbackRequest] = None,
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    try:
        result = container.settlement.clawback_on_reversal(db, job_id, reason=payload.reason if payload else None)
    except InvariantViolationError as e:
        raise HTTPException(status_code=500, detail=e.message)
    if result.reason in _STATUS_BY_REASON:
        raise HTTPException(status_code=_STATUS_BY_REASON[result.reason], detail=result.detail or result.reason)
    return ResponseBase(
        success=True,
        message="Nothing to claw back" if result.skipped else "Commission clawed back",
        data={
            "job_id": job_id,
            "clawed_back": result.clawed_back,
            "clawed_back_amount": str(result.clawed_back_amount),
            "debt_created": result.debt_created,
            "debt_amount": str(result.debt_amount),
            "debt_id": result.debt_id,
            "skipped": result.skipped,
        },
    )

@router.get(
    "/wallets/{provider_id}",
    response_model=ResponseBase,
    summary="Wallet balance, pending debts and recent ledger entries"
)
async def wallet_summary(
    provider_id: int,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
) -> ResponseBase:
    wallet = _get_wallet(db, provider_id)
    summary = WalletSummary(
        wallet_id=wallet.id,
        provider_id=provider_id,
        balance=wallet.balance,
        frozen_balance=wallet.frozen_balance,
        total_earned=wallet.total_earned,
        total_withdrawn=wallet.total_withdrawn,
        outstanding_debt=outstanding_total(db, wallet.id),
        pending_debts=[WalletDebtRead.model_validate(d) for d in pending_debts(db, wallet.id, for_update=False)],
        recent_transactions=[WalletTransactionRead.model_validate(t) for t in list_transactions(db, wallet.id, limit=limit)],
    )
    return ResponseBase(success=True, data=summary.model_dump(mode="json"))

@router.get(
    "/wallets/{provider_id}/verify",
    response_model=ResponseBase,
    summary="Replay the ledger and compare with the stored balance"
)
async def verify_wallet_ledger(
    provider_id: int,
    db: Session = Depends(get_db),
) -> ResponseBase:
    wallet = _get_wallet(db, provider_id)
    check = verify_wallet(db, wallet.id)
    data = LedgerCheckRead(
        wallet_id=check.wallet_id,
        stored_balance=check.stored_balance,
        replayed_balance=check.replayed_balance,
        transaction_count=check.transaction_count,
        last_balance_after=check.last_balance_after,
        consistent=check.consistent,
    )
    return ResponseBase(
        success=check.consistent,
        message="Ledger consistent" if check.consistent else "Ledger mismatch",
        data=data.model_dump(mode="json"),
    )
