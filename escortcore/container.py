"""Composition root wiring the dispatch and settlement services together."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from sqlalchemy.orm import Session

from escortcore import database
from escortcore.config import ENABLE_SWEEP_SCHEDULER, OUTBOX_SETTINGS
from escortcore.jobs.outbox import OutboxQueue
from escortcore.jobs.redis_outbox import RedisOutboxQueue
from escortcore.jobs.sweep import SweepScheduler
from escortcore.jobs.worker_outbox import OutboxWorker, create_queue
from escortcore.services.claim_arbitrator import ClaimArbitrator
from escortcore.services.commission import GlobalRateCache
from escortcore.services.distribution import DistributionNotifier, NullDistribution, QueuedDistribution
from escortcore.services.notifications import LoggingNotifier, Notifier, QueueNotifier
from escortcore.services.scoring import DispatchConfig
from escortcore.services.settlement import SettlementEngine
from escortcore.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class CoreContainer:
    queue: Union[OutboxQueue, RedisOutboxQueue]
    arbitrator: ClaimArbitrator
    settlement: SettlementEngine
    worker: OutboxWorker
    scheduler: SweepScheduler | None = None

    def start(self) -> None:
        if OUTBOX_SETTINGS.get("enabled", True):
            self.worker.start()
        if self.scheduler is not None:
            self.scheduler.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background threads, waiting up to ``timeout`` seconds for each."""
        if self.scheduler is not None:
            self.scheduler.stop(timeout=timeout)
        self.worker.stop()
        # Closing the queue wakes a worker blocked on dequeue.
        self.queue.shutdown()
        self.worker.join(timeout=timeout)


def _default_session_factory() -> Session:
    # Resolved at call time so a rebound SessionLocal (tests) is honoured.
    return database.SessionLocal()


def build_container(
    *,
    session_factory: Callable[[], Session] | None = None,
    queue: Union[OutboxQueue, RedisOutboxQueue, None] = None,
    delivery: Notifier | None = None,
    distribution_sink: DistributionNotifier | None = None,
    dispatch_config: DispatchConfig | None = None,
    enable_sweep: bool | None = None,
) -> CoreContainer:
    """Build the services. Side effects go through the outbox; ``delivery`` and
    ``distribution_sink`` are what the outbox worker finally calls."""
    queue = queue if queue is not None else create_queue()
    arbitrator = ClaimArbitrator(notifier=QueueNotifier(queue), config=dispatch_config or DispatchConfig.from_settings())
    settlement = SettlementEngine(
        notifier=QueueNotifier(queue),
        distribution=QueuedDistribution(queue),
        rate_cache=GlobalRateCache(),
    )
    worker = OutboxWorker(queue, notifier=delivery or LoggingNotifier(), distribution=distribution_sink or NullDistribution())
    sweep_on = ENABLE_SWEEP_SCHEDULER if enable_sweep is None else enable_sweep
    scheduler = SweepScheduler(session_factory or _default_session_factory, arbitrator) if sweep_on else None
    logger.info("Core container built", sweep_enabled=sweep_on, outbox=queue.snapshot().get("backend"))
    return CoreContainer(queue=queue, arbitrator=arbitrator, settlement=settlement, worker=worker, scheduler=scheduler)


__all__ = ["CoreContainer", "build_container"]
