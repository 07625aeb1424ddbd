"""Outbox job payloads (best-effort side effects run after commit)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(slots=True)
class NotificationJob:
    event_kind: str
    recipient_id: int
    recipient_kind: str  # "provider" | "customer"
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"notify:{self.event_kind}:{self.recipient_kind}:{self.recipient_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_kind": self.event_kind,
            "recipient_id": self.recipient_id,
            "recipient_kind": self.recipient_kind,
            "data": self.data,
            "correlation_id": self.correlation_id,
        }


@dataclass(slots=True)
class DistributionJob:
    job_id: int
    provider_id: int
    paid_amount: str  # decimal string
    correlation_id: Optional[str] = None

    def key(self) -> str:  # one payout run per job
        return f"distribute:{self.job_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "provider_id": self.provider_id,
            "paid_amount": self.paid_amount,
            "correlation_id": self.correlation_id,
        }


JOB_TYPES: dict[str, type] = {
    "NotificationJob": NotificationJob,
    "DistributionJob": DistributionJob,
}


__all__ = ["NotificationJob", "DistributionJob", "JOB_TYPES"]
