"""Distribution (referral payout) hook invoked after a settlement commits.

Payout rules live outside the core; the core only announces that a job's
paid amount is final for ``provider_id``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from escortcore.jobs.outbox_job import DistributionJob
from escortcore.services.notifications import OutboxLike
from escortcore.utils import get_logger

logger = get_logger(__name__)


class DistributionNotifier(Protocol):
    def distribute(self, job_id: int, provider_id: int, paid_amount: Decimal) -> None: ...


class NullDistribution:
    def distribute(self, job_id: int, provider_id: int, paid_amount: Decimal) -> None:
        logger.debug("Distribution disabled", job_id=job_id, provider_id=provider_id)


class QueuedDistribution:
    """Defers payouts to the outbox worker, which hands them to its distribution sink."""

    def __init__(self, queue: OutboxLike) -> None:
        self.queue = queue

    def distribute(self, job_id: int, provider_id: int, paid_amount: Decimal) -> None:
        self.queue.enqueue(
            DistributionJob(job_id=job_id, provider_id=provider_id, paid_amount=str(paid_amount), correlation_id=f"job:{job_id}"),
            priority="low",
        )


__all__ = ["DistributionNotifier", "NullDistribution", "QueuedDistribution"]
