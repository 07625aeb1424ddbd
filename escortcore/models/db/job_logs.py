from __future__ import annotations
"""SQLAlchemy model for the per-job audit log (claims, transitions, settlement, clawback)."""
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .jobs import Job
from sqlalchemy.sql import func
from escortcore.database import Base
from .enums import JobStatus, OperatorType

class JobLog(Base):
    __tablename__ = "job_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False, index=True)
    from_status: Mapped[JobStatus | None] = mapped_column(Enum(JobStatus), nullable=True)
    to_status: Mapped[JobStatus | None] = mapped_column(Enum(JobStatus), nullable=True)
    operator_type: Mapped[OperatorType] = mapped_column(Enum(OperatorType), default=OperatorType.SYSTEM)
    operator_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remark: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    job: Mapped["Job"] = relationship("Job", back_populates="logs")
