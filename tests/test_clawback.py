"""Commission reversal on refund: balance deduction, shortfall debt, once only."""
from decimal import Decimal

import pytest

from conftest import RecordingNotifier
from escortcore.models.db import Job, JobLog, WalletDebt, WalletTransaction
from escortcore.models.db.enums import CommissionSource, DebtStatus, JobStatus, TransactionType
from escortcore.services.ledger import verify_wallet
from escortcore.services.settlement import SettlementEngine


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def engine(notifier):
    return SettlementEngine(notifier=notifier)


@pytest.fixture()
def refunded_job(db_session, job_factory):
    """A refunded job whose commission was credited earlier."""
    def _create(provider, commission="140.00", paid="200.00", status=JobStatus.REFUNDED):
        job = job_factory(paid_amount=paid, status=status, provider=provider)
        job.commission_rate = Decimal("70")
        job.commission_amount = Decimal(commission)
        job.platform_amount = Decimal(paid) - Decimal(commission)
        job.commission_source = CommissionSource.GLOBAL
        db_session.commit()
        return job
    return _create


def test_clawback_short_balance_opens_debt(db_session, engine, notifier, provider_factory, refunded_job, wallet_of):
    provider = provider_factory(balance="50.00")
    job = refunded_job(provider)

    result = engine.clawback_on_reversal(db_session, job.id, reason="customer complaint")

    assert result.clawed_back
    assert result.clawed_back_amount == Decimal("50.00")
    assert result.debt_created
    assert result.debt_amount == Decimal("90.00")

    wallet = wallet_of(provider.id)
    assert wallet.balance == Decimal("0.00")
    assert wallet.total_earned == Decimal("0.00")
    debt = db_session.get(WalletDebt, result.debt_id)
    assert debt.original_amount == Decimal("90.00")
    assert debt.remaining_amount == Decimal("90.00")
    assert debt.status == DebtStatus.PENDING
    assert debt.job_id == job.id

    last = (
        db_session.query(WalletTransaction)
        .filter_by(wallet_id=wallet.id)
        .order_by(WalletTransaction.id.desc())
        .first()
    )
    assert last.type == TransactionType.REFUND
    assert last.amount == Decimal("-50.00")
    assert last.title == "Refund clawback (partial)"
    assert db_session.get(Job, job.id).clawed_back_at is not None
    assert db_session.query(JobLog).filter_by(job_id=job.id, action="refund_clawback").count() == 1
    assert notifier.kinds() == ["commission_clawed_back"]
    assert verify_wallet(db_session, wallet.id).consistent


def test_clawback_fully_covered(db_session, engine, provider_factory, refunded_job, wallet_of):
    provider = provider_factory(balance="200.00")
    job = refunded_job(provider)

    result = engine.clawback_on_reversal(db_session, job.id)

    assert result.clawed_back_amount == Decimal("140.00")
    assert not result.debt_created
    assert wallet_of(provider.id).balance == Decimal("60.00")
    assert db_session.query(WalletDebt).count() == 0


def test_clawback_with_empty_wallet_is_all_debt(db_session, engine, provider_factory, refunded_job, wallet_of):
    provider = provider_factory()
    job = refunded_job(provider)

    result = engine.clawback_on_reversal(db_session, job.id)

    assert result.clawed_back_amount == Decimal("0.00")
    assert result.debt_amount == Decimal("140.00")
    wallet = wallet_of(provider.id)
    assert wallet.balance == Decimal("0.00")
    assert db_session.query(WalletTransaction).filter_by(wallet_id=wallet.id).count() == 0


def test_second_clawback_is_a_conflict(db_session, engine, provider_factory, refunded_job, wallet_of):
    provider = provider_factory(balance="50.00")
    job = refunded_job(provider)

    assert engine.clawback_on_reversal(db_session, job.id).clawed_back
    again = engine.clawback_on_reversal(db_session, job.id)

    assert not again.clawed_back
    assert again.reason == "conflict"
    assert db_session.query(WalletDebt).count() == 1
    assert wallet_of(provider.id).balance == Decimal("0.00")


def test_clawback_without_commission_is_skipped(db_session, engine, provider_factory, job_factory):
    provider = provider_factory()
    job = job_factory(status=JobStatus.REFUNDED, provider=provider)

    result = engine.clawback_on_reversal(db_session, job.id)

    assert result.skipped
    assert result.reason == "no_commission"
    db_session.expire_all()
    assert db_session.get(Job, job.id).clawed_back_at is None


def test_clawback_requires_refund_status(db_session, engine, provider_factory, refunded_job):
    provider = provider_factory(balance="200.00")
    job = refunded_job(provider, status=JobStatus.COMPLETED)

    result = engine.clawback_on_reversal(db_session, job.id)

    assert result.reason == "conflict"


def test_debt_from_clawback_is_recovered_by_next_settlement(db_session, engine, provider_factory, refunded_job, job_factory, wallet_of):
    provider = provider_factory(balance="50.00")
    refunded = refunded_job(provider)
    debt_id = engine.clawback_on_reversal(db_session, refunded.id).debt_id

    next_job = job_factory(paid_amount="200.00", status=JobStatus.COMPLETED, provider=provider)
    settled = engine.settle_on_completion(db_session, next_job.id)

    assert settled.debt_offset == Decimal("90.00")
    assert settled.net_credit == Decimal("50.00")
    wallet = wallet_of(provider.id)
    assert wallet.balance == Decimal("50.00")
    assert db_session.get(WalletDebt, debt_id).status == DebtStatus.COMPLETED
    assert verify_wallet(db_session, wallet.id).consistent
