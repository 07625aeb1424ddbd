import os
import secrets
import sys
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'escortcore' resolves without an editable install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from escortcore.main import app  # type: ignore
from escortcore.database import Base  # type: ignore
from escortcore.api import deps  # type: ignore
from escortcore.models.db import (
    CustomerMembership, Job, Provider, ProviderTier, ServiceItem, Venue, Wallet,
)
from escortcore.models.db.enums import JobStatus, MembershipStatus, ProviderStatus, TransactionType, WorkStatus
from escortcore.container import build_container
from escortcore.jobs.outbox import OutboxQueue
from escortcore.services.ledger import ensure_wallet, post_entry
from escortcore.services.scoring import DispatchConfig

# File-based SQLite so racing claim threads each get their own connection.
# The busy timeout lets a second writer wait for the first to commit instead of failing.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_escortcore.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Services and the sweep resolve database.SessionLocal at call time; point it at the test DB.
import escortcore.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore
_database.engine = engine  # type: ignore


class RecordingNotifier:
    """Notifier double that remembers every send (and can be told to fail)."""

    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, int, str, dict]] = []
        self.fail = fail

    def send(self, event_kind, recipient_id, recipient_kind, data):
        if self.fail:
            raise RuntimeError("transport down")
        self.sent.append((event_kind, recipient_id, recipient_kind, data))

    def kinds(self) -> list[str]:
        return [s[0] for s in self.sent]


class RecordingDistribution:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[int, int, Decimal]] = []
        self.fail = fail

    def distribute(self, job_id, provider_id, paid_amount):
        if self.fail:
            raise RuntimeError("payout service down")
        self.calls.append((job_id, provider_id, paid_amount))


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_escortcore.db")
    except OSError:
        pass

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture(autouse=True)
def _clean_tables(create_test_db):  # type: ignore[unused-argument]
    """Every test starts from empty tables."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def dispatch_config():
    return DispatchConfig.from_settings()

@pytest.fixture()
def container():
    """Services wired to an in-memory outbox; background threads are not started."""
    queue = OutboxQueue()
    built = build_container(
        session_factory=TestingSessionLocal,
        queue=queue,
        delivery=RecordingNotifier(),
        distribution_sink=RecordingDistribution(),
        enable_sweep=False,
    )
    app.state.container = built  # type: ignore[attr-defined]
    yield built
    queue.purge()
    queue.shutdown()
    app.state.container = None  # type: ignore[attr-defined]

@pytest.fixture()
def client(container):
    # No context manager: lifespan (create_all + background threads) stays off in tests.
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def tier_factory(db_session):
    def _create(code: str = "intermediate", commission_rate: Decimal | None = None):
        existing = db_session.query(ProviderTier).filter_by(code=code).first()
        if existing:
            return existing
        tier = ProviderTier(code=code, name=code.title(), commission_rate=commission_rate)
        db_session.add(tier)
        db_session.commit()
        db_session.refresh(tier)
        return tier
    return _create

@pytest.fixture()
def venue_factory(db_session):
    def _create(name: str | None = None):
        venue = Venue(name=name or f"Venue {secrets.token_hex(2)}", city_code="SH")
        db_session.add(venue)
        db_session.commit()
        db_session.refresh(venue)
        return venue
    return _create

@pytest.fixture()
def service_factory(db_session):
    def _create(price: str = "200.00", commission_rate: Decimal | None = None, duration_minutes: int = 120):
        service = ServiceItem(
            name=f"Service {secrets.token_hex(2)}",
            price=Decimal(price),
            duration_minutes=duration_minutes,
            commission_rate=commission_rate,
        )
        db_session.add(service)
        db_session.commit()
        db_session.refresh(service)
        return service
    return _create

@pytest.fixture()
def provider_factory(db_session):
    def _create(
        name: str | None = None,
        *,
        rating: str = "4.80",
        tier=None,
        venues=None,
        status: ProviderStatus = ProviderStatus.ACTIVE,
        work_status: WorkStatus = WorkStatus.WORKING,
        daily_quota: int = 5,
        daily_claimed: int = 0,
        balance: str | None = None,
    ):
        provider = Provider(
            name=name or f"Provider {secrets.token_hex(2)}",
            status=status,
            work_status=work_status,
            daily_quota=daily_quota,
            daily_claimed=daily_claimed,
            total_jobs=0,
            rating=Decimal(rating),
            tier_id=tier.id if tier is not None else None,
        )
        if venues:
            provider.venues = list(venues)
        db_session.add(provider)
        db_session.flush()
        wallet = ensure_wallet(db_session, provider.id)
        if balance is not None:
            post_entry(
                db_session,
                wallet,
                amount=Decimal(balance),
                type=TransactionType.INCOME,
                title="Opening balance",
                earned_delta=Decimal(balance),
            )
        db_session.commit()
        db_session.refresh(provider)
        return provider
    return _create

@pytest.fixture()
def job_factory(db_session):
    def _create(
        *,
        paid_amount: str = "200.00",
        status: JobStatus = JobStatus.PAID,
        venue=None,
        service=None,
        customer_id: int = 1001,
        scheduled_date: date | None = None,
        scheduled_time: str = "20:00",
        duration_minutes: int = 120,
        provider=None,
        paid_at: datetime | None = None,
    ):
        now = datetime.now(timezone.utc)
        job = Job(
            job_no=f"J{secrets.token_hex(5).upper()}",
            customer_id=customer_id,
            service_id=service.id if service is not None else None,
            venue_id=venue.id if venue is not None else None,
            status=status,
            provider_id=provider.id if provider is not None else None,
            scheduled_date=scheduled_date or (now + timedelta(days=1)).date(),
            scheduled_time=scheduled_time,
            duration_minutes=duration_minutes,
            paid_amount=Decimal(paid_amount),
            paid_at=paid_at if paid_at is not None else (now if status != JobStatus.PENDING else None),
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job
    return _create

@pytest.fixture()
def membership_factory(db_session):
    def _create(customer_id: int, *, priority_booking: bool = True, expires_in_days: int = 30,
                status: MembershipStatus = MembershipStatus.ACTIVE):
        membership = CustomerMembership(
            customer_id=customer_id,
            level_name="Gold",
            status=status,
            expires_at=datetime.now(timezone.utc) + timedelta(days=expires_in_days),
            benefits={"priority_booking": priority_booking},
        )
        db_session.add(membership)
        db_session.commit()
        return membership
    return _create

@pytest.fixture()
def wallet_of(db_session):
    """Fresh read of a provider's wallet (drops stale identity-map state first)."""
    def _read(provider_id: int) -> Wallet:
        db_session.expire_all()
        return db_session.query(Wallet).filter(Wallet.provider_id == provider_id).one()
    return _read
