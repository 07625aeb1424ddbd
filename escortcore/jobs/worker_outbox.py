"""Background worker draining the outbox (notifications, distribution payouts)."""
from __future__ import annotations

import threading
import time
from decimal import Decimal
from typing import Any, Optional, Protocol, Union

from escortcore.config import OUTBOX_SETTINGS
from escortcore.jobs.outbox import OutboxItem, OutboxQueue
from escortcore.jobs.outbox_job import DistributionJob, NotificationJob
from escortcore.jobs.redis_outbox import RedisOutboxQueue
from escortcore.services.distribution import DistributionNotifier, NullDistribution
from escortcore.services.notifications import LoggingNotifier, Notifier
from escortcore.utils import get_logger
from escortcore.utils.backoff import redelivery_delay

logger = get_logger(__name__)

# Recent delivery failures (kept small; exposed for tests and /health/detailed)
LAST_FAILURES: list[dict] = []
_MAX_FAILURES_KEPT = 50


class QueueProtocol(Protocol):
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0, attempts: int = 0) -> Any: ...
    def dequeue_item(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[OutboxItem]: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


class OutboxWorker:
    def __init__(
        self,
        queue: QueueProtocol,
        *,
        notifier: Notifier | None = None,
        distribution: DistributionNotifier | None = None,
        poll_timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.queue = queue
        self.notifier = notifier or LoggingNotifier()
        self.distribution = distribution or NullDistribution()
        self.poll_timeout = float(poll_timeout if poll_timeout is not None else OUTBOX_SETTINGS.get("poll_timeout_seconds", 5.0))  # type: ignore[arg-type]
        self.max_attempts = int(max_attempts if max_attempts is not None else OUTBOX_SETTINGS.get("max_attempts", 3))  # type: ignore[arg-type]
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="outbox-worker", daemon=True)
        self._thread.start()
        logger.info("Outbox worker started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        logger.info("Outbox worker stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout=timeout)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Outbox worker did not stop in time", timeout=timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self.queue.dequeue_item(timeout=self.poll_timeout)
                if item is None:
                    continue
                self.process(item)
            except Exception as e:  # pragma: no cover - keep the thread alive
                logger.error("Outbox worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def deliver(self, job: Any) -> None:
        if isinstance(job, NotificationJob):
            self.notifier.send(job.event_kind, job.recipient_id, job.recipient_kind, job.data)
        elif isinstance(job, DistributionJob):
            self.distribution.distribute(job.job_id, job.provider_id, Decimal(job.paid_amount))
        else:
            logger.warning("Skipping unknown outbox job type", job_type=type(job).__name__)

    def process(self, item: OutboxItem) -> bool:
        """Deliver one item; on failure requeue with backoff until attempts run out."""
        job = item.job
        try:
            self.deliver(job)
            return True
        except Exception as e:
            attempts = item.attempts + 1
            key = job.key() if hasattr(job, "key") else type(job).__name__
            correlation_id = getattr(job, "correlation_id", None)
            LAST_FAILURES.append({"key": key, "correlation_id": correlation_id, "error": str(e), "type": type(e).__name__, "attempts": attempts})
            del LAST_FAILURES[:-_MAX_FAILURES_KEPT]
            if attempts >= self.max_attempts:
                logger.error("Outbox delivery abandoned", key=key, correlation_id=correlation_id, attempts=attempts, error=str(e))
                return False
            delay = redelivery_delay(attempts)
            logger.warning("Outbox delivery failed, retrying", key=key, correlation_id=correlation_id, attempts=attempts, delay_seconds=round(delay, 2), error=str(e))
            try:
                self.queue.enqueue(job, priority=item.priority_label, delay_seconds=delay, attempts=attempts)
            except (RuntimeError, OverflowError) as requeue_error:
                logger.error("Outbox requeue failed", key=key, error=str(requeue_error))
            return False


def create_queue() -> Union[OutboxQueue, RedisOutboxQueue]:
    """In-memory outbox unless ``OUTBOX_USE_REDIS`` is set."""
    if OUTBOX_SETTINGS.get("use_redis", False):
        queue = RedisOutboxQueue()
        if queue.health_check():
            logger.info("Using Redis-backed outbox")
            return queue
        logger.warning("Redis outbox requested but unreachable; using in-memory outbox")
    logger.info("Using in-memory outbox")
    return OutboxQueue()


__all__ = ["OutboxWorker", "LAST_FAILURES", "create_queue"]
