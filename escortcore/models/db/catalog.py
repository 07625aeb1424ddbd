from __future__ import annotations
"""SQLAlchemy models for catalogue data the core reads: services, venues, tiers, global commission config."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .providers import Provider
from sqlalchemy.sql import func
from escortcore.database import Base


class ServiceItem(Base):
    __tablename__ = "service_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=120)
    # Highest-precedence provider share (percent); NULL defers to tier/global
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Venue(Base):
    __tablename__ = "venues"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    city_code: Mapped[str | None] = mapped_column(String, nullable=True)

    familiar_providers: Mapped[list["Provider"]] = relationship(
        "Provider", secondary="provider_venues", back_populates="venues"
    )


class ProviderTier(Base):
    __tablename__ = "provider_tiers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String, unique=True, index=True)  # senior / intermediate / junior / trainee
    name: Mapped[str] = mapped_column(String, nullable=False)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    providers: Mapped[list["Provider"]] = relationship("Provider", back_populates="tier")


class CommissionConfig(Base):
    """Global commission defaults. A single row is expected; none means the hard-coded default applies."""
    __tablename__ = "commission_configs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    default_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
