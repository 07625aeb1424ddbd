from __future__ import annotations
"""SQLAlchemy model for jobs (bookable units of service work)."""
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, Date, DateTime, Numeric, Enum, ForeignKey, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .providers import Provider
    from .catalog import ServiceItem, Venue
    from .job_logs import JobLog
from sqlalchemy.sql import func
from escortcore.database import Base
from .enums import JobStatus, AssignMethod, CommissionSource

class Job(Base):
    __tablename__ = "jobs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    job_no: Mapped[str] = mapped_column(String, unique=True, index=True)
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    service_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("service_items.id"), nullable=True)
    venue_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("venues.id"), nullable=True, index=True)

    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), default=JobStatus.PENDING, index=True)

    # Assignment (written only by the claim primitive)
    provider_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("providers.id"), nullable=True, index=True)
    assign_method: Mapped[AssignMethod | None] = mapped_column(Enum(AssignMethod), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Denormalised copy of the provider's public attributes at claim time: {"name", "tier", "rating"}
    provider_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)  # "HH:MM"
    duration_minutes: Mapped[int] = mapped_column(Integer, default=120)

    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Settlement (set once, never recomputed)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    platform_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    commission_source: Mapped[CommissionSource | None] = mapped_column(Enum(CommissionSource), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clawed_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    provider: Mapped[Provider | None] = relationship("Provider")
    service: Mapped[ServiceItem | None] = relationship("ServiceItem")
    venue: Mapped[Venue | None] = relationship("Venue")
    logs: Mapped[list["JobLog"]] = relationship("JobLog", back_populates="job", order_by="JobLog.id")
