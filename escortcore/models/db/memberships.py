from __future__ import annotations
"""SQLAlchemy model for customer memberships (only the dispatch-relevant benefit flags)."""
from datetime import datetime
from typing import Any
from sqlalchemy import Integer, String, DateTime, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from escortcore.database import Base
from .enums import MembershipStatus

class CustomerMembership(Base):
    __tablename__ = "customer_memberships"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    level_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[MembershipStatus] = mapped_column(Enum(MembershipStatus), default=MembershipStatus.ACTIVE, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # e.g. {"priority_booking": true}
    benefits: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
