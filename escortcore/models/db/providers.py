from __future__ import annotations
"""SQLAlchemy model for service providers (escorts) and their venue familiarity."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Numeric, Enum, ForeignKey, Table, Column, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .catalog import ProviderTier, Venue
    from .wallets import Wallet
from sqlalchemy.sql import func
from escortcore.database import Base
from .enums import ProviderStatus, WorkStatus

# Association Table for Many-to-Many: Providers <-> Venues they declared familiarity with
provider_venues = Table(
    'provider_venues',
    Base.metadata,
    Column('provider_id', Integer, ForeignKey('providers.id'), primary_key=True),
    Column('venue_id', Integer, ForeignKey('venues.id'), primary_key=True)
)

class Provider(Base):
    __tablename__ = "providers"
    __table_args__ = (
        CheckConstraint("daily_claimed <= daily_quota", name="ck_provider_daily_quota"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[ProviderStatus] = mapped_column(Enum(ProviderStatus), default=ProviderStatus.PENDING, index=True)
    work_status: Mapped[WorkStatus] = mapped_column(Enum(WorkStatus), default=WorkStatus.RESTING, index=True)

    daily_claimed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_quota: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    total_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    tier_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("provider_tiers.id"), nullable=True, index=True)
    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("5.00"))

    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    tier: Mapped[ProviderTier | None] = relationship("ProviderTier", back_populates="providers")
    venues: Mapped[list["Venue"]] = relationship("Venue", secondary=provider_venues, back_populates="familiar_providers")
    wallet: Mapped[Wallet | None] = relationship("Wallet", back_populates="provider", uselist=False)

    @property
    def tier_code(self) -> str | None:
        return self.tier.code if self.tier is not None else None
