"""Wallet ledger: balance and ledger move together and replay to the same number."""
from decimal import Decimal

import pytest

from escortcore.errors import InvariantViolationError, NotFoundError
from escortcore.models.db import Wallet, WalletTransaction
from escortcore.models.db.enums import TransactionType
from escortcore.services.ledger import (
    ensure_wallet,
    get_wallet_for_update,
    list_transactions,
    post_entry,
    replay_balance,
    verify_wallet,
)
from escortcore.services.providers import activate_provider


def test_post_entry_records_running_balance(db_session, provider_factory, wallet_of):
    provider = provider_factory()
    wallet = get_wallet_for_update(db_session, provider.id)

    post_entry(db_session, wallet, amount=Decimal("100.00"), type=TransactionType.INCOME, title="in", earned_delta=Decimal("100.00"))
    post_entry(db_session, wallet, amount=Decimal("-30.00"), type=TransactionType.REFUND, title="out")
    db_session.commit()

    wallet = wallet_of(provider.id)
    assert wallet.balance == Decimal("70.00")
    assert wallet.total_earned == Decimal("100.00")
    entries = list_transactions(db_session, wallet.id)
    # Newest first
    assert [e.balance_after for e in entries] == [Decimal("70.00"), Decimal("100.00")]
    assert replay_balance(db_session, wallet.id) == Decimal("70.00")


def test_negative_balance_is_refused(db_session, provider_factory, wallet_of):
    provider = provider_factory(balance="10.00")
    wallet = get_wallet_for_update(db_session, provider.id)

    with pytest.raises(InvariantViolationError):
        post_entry(db_session, wallet, amount=Decimal("-10.01"), type=TransactionType.REFUND, title="too much")
    db_session.rollback()

    assert wallet_of(provider.id).balance == Decimal("10.00")
    assert db_session.query(WalletTransaction).count() == 1


def test_rollback_discards_balance_and_entry_together(db_session, provider_factory, wallet_of):
    provider = provider_factory()
    wallet = get_wallet_for_update(db_session, provider.id)
    post_entry(db_session, wallet, amount=Decimal("25.00"), type=TransactionType.INCOME, title="in")
    db_session.rollback()

    assert wallet_of(provider.id).balance == Decimal("0.00")
    assert db_session.query(WalletTransaction).count() == 0


def test_verify_detects_out_of_band_balance_change(db_session, provider_factory, wallet_of):
    provider = provider_factory(balance="40.00")
    wallet = wallet_of(provider.id)
    assert verify_wallet(db_session, wallet.id).consistent

    wallet.balance = Decimal("45.00")
    db_session.commit()

    check = verify_wallet(db_session, wallet.id)
    assert not check.consistent
    assert check.stored_balance == Decimal("45.00")
    assert check.replayed_balance == Decimal("40.00")


def test_verify_empty_wallet(db_session, provider_factory, wallet_of):
    provider = provider_factory()
    check = verify_wallet(db_session, wallet_of(provider.id).id)
    assert check.consistent
    assert check.transaction_count == 0
    assert check.last_balance_after is None


def test_ensure_wallet_is_get_or_create(db_session, provider_factory):
    provider = provider_factory()
    first = ensure_wallet(db_session, provider.id)
    second = ensure_wallet(db_session, provider.id)
    assert first.id == second.id
    assert db_session.query(Wallet).filter_by(provider_id=provider.id).count() == 1


def test_missing_wallet_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        get_wallet_for_update(db_session, 31337)


def test_activation_creates_wallet(db_session):
    from escortcore.models.db import Provider
    from escortcore.models.db.enums import ProviderStatus

    provider = Provider(name="New", daily_quota=5, daily_claimed=0, total_jobs=0, rating=Decimal("5.00"))
    db_session.add(provider)
    db_session.commit()

    activated = activate_provider(db_session, provider.id)

    assert activated.status == ProviderStatus.ACTIVE
    wallet = db_session.query(Wallet).filter_by(provider_id=provider.id).one()
    assert wallet.balance == Decimal("0.00")


def test_activation_survives_losing_the_wallet_creation_race(db_session, monkeypatch):
    from sqlalchemy.orm import Session

    from escortcore.models.db import Provider
    from escortcore.models.db.enums import ProviderStatus
    from escortcore.services import ledger

    provider = Provider(name="Racer", daily_quota=5, daily_claimed=0, total_jobs=0, rating=Decimal("5.00"))
    db_session.add(provider)
    db_session.commit()
    provider_id = provider.id

    real_find = ledger._find_wallet
    calls = {"n": 0}

    def find_after_other_worker_created_it(session, pid):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another worker inserts the wallet after our lookup missed.
            with Session(bind=db_session.get_bind()) as other:
                other.add(
                    Wallet(
                        provider_id=pid,
                        balance=Decimal("0.00"),
                        frozen_balance=Decimal("0.00"),
                        total_earned=Decimal("0.00"),
                        total_withdrawn=Decimal("0.00"),
                    )
                )
                other.commit()
            return None
        return real_find(session, pid)

    monkeypatch.setattr(ledger, "_find_wallet", find_after_other_worker_created_it)

    activate_provider(db_session, provider_id)

    with Session(bind=db_session.get_bind()) as fresh:
        stored = fresh.get(Provider, provider_id)
        assert stored.status == ProviderStatus.ACTIVE
        assert fresh.query(Wallet).filter_by(provider_id=provider_id).count() == 1
