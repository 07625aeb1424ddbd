"""Notification capability consumed by the core.

The core never delivers anything itself. It calls ``Notifier.send`` after a
commit and ignores the outcome: ``notify_safely`` logs a failure and moves
on, so a broken transport can never undo a claim or a settlement.
"""
from __future__ import annotations

from typing import Any, Protocol

from escortcore.config import NOTIFICATION_PRIORITIES
from escortcore.jobs.outbox_job import NotificationJob
from escortcore.utils import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    def send(self, event_kind: str, recipient_id: int, recipient_kind: str, data: dict[str, Any]) -> None: ...


class OutboxLike(Protocol):
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0, attempts: int = 0) -> Any: ...


class LoggingNotifier:
    """Delivery sink that only writes the event to the log."""

    def send(self, event_kind: str, recipient_id: int, recipient_kind: str, data: dict[str, Any]) -> None:
        logger.info(
            "Notification",
            event_kind=event_kind,
            recipient_id=recipient_id,
            recipient_kind=recipient_kind,
            data=data,
        )


class QueueNotifier:
    """Hands notifications to the outbox; the worker delivers them later."""

    def __init__(self, queue: OutboxLike) -> None:
        self.queue = queue

    def send(self, event_kind: str, recipient_id: int, recipient_kind: str, data: dict[str, Any]) -> None:
        priority = NOTIFICATION_PRIORITIES.get(event_kind, "normal")
        job_id = data.get("job_id")
        self.queue.enqueue(
            NotificationJob(
                event_kind=event_kind,
                recipient_id=recipient_id,
                recipient_kind=recipient_kind,
                data=dict(data),
                correlation_id=f"job:{job_id}" if job_id is not None else None,
            ),
            priority=priority,
        )


def notify_safely(
    notifier: Notifier | None,
    event_kind: str,
    recipient_id: int | None,
    recipient_kind: str,
    data: dict[str, Any],
) -> bool:
    """Send and swallow transport errors. Returns whether the send went through."""
    if notifier is None or recipient_id is None:
        return False
    try:
        notifier.send(event_kind, recipient_id, recipient_kind, data)
        return True
    except Exception as e:
        logger.warning(
            "Notification failed",
            event_kind=event_kind,
            recipient_id=recipient_id,
            recipient_kind=recipient_kind,
            error=str(e),
        )
        return False


__all__ = ["Notifier", "LoggingNotifier", "QueueNotifier", "notify_safely"]
