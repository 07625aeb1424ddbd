"""In-process outbox for post-commit side effects.

Notifications and distribution payouts are enqueued here after the owning
transaction commits and are drained by ``OutboxWorker``. Nothing on the
synchronous claim / settlement path ever waits on this queue.

Ordering:
- lower numeric priority first (``OUTBOX_SETTINGS['priorities']``),
- FIFO within a priority (monotonic sequence),
- optional delay per item (used for redelivery backoff).

Items with a delay sit in a separate heap keyed by ready time and are
promoted once due, so a delayed high-priority retry never blocks ready
low-priority work.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import heapq
import threading
import time

from escortcore.config import OUTBOX_SETTINGS
from escortcore.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class OutboxItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int
    attempts: int = 0


class OutboxQueue:
    def __init__(self, *, max_in_memory: int | None = None) -> None:
        priorities_cfg = OUTBOX_SETTINGS.get("priorities", {})
        self._priority_map: dict[str, int] = dict(priorities_cfg) if isinstance(priorities_cfg, dict) else {"normal": 5}
        self._warn_depth = int(OUTBOX_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._max_in_memory = int(max_in_memory if max_in_memory is not None else OUTBOX_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._cv = threading.Condition(threading.RLock())
        self._ready: list[tuple[int, int, OutboxItem]] = []
        self._delayed: list[tuple[float, int, OutboxItem]] = []
        self._seq = 0
        self._closed = False
        self._dropped = 0

    def _promote_due(self, now_ts: float) -> None:
        while self._delayed and self._delayed[0][0] <= now_ts:
            _, _, item = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (item.priority_value, item.seq, item))

    # ----------------------------- producer side ----------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0, attempts: int = 0) -> OutboxItem:
        if priority not in self._priority_map:
            raise ValueError(f"Unknown priority '{priority}'")
        with self._cv:
            if self._closed:
                raise RuntimeError("Outbox closed")
            if self.depth() >= self._max_in_memory:
                self._dropped += 1
                raise OverflowError("Outbox capacity exceeded")
            now_ts = time.time()
            self._seq += 1
            item = OutboxItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now_ts,
                ready_at=now_ts + max(0.0, delay_seconds),
                seq=self._seq,
                attempts=attempts,
            )
            if item.ready_at <= now_ts:
                heapq.heappush(self._ready, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._delayed, (item.ready_at, item.seq, item))
            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Outbox depth warning", depth=depth)
            self._cv.notify()
            return item

    # ----------------------------- consumer side ----------------------------- #
    def dequeue_item(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[OutboxItem]:
        deadline = None if timeout is None else time.time() + timeout
        with self._cv:
            while True:
                now_ts = time.time()
                self._promote_due(now_ts)
                if self._ready:
                    return heapq.heappop(self._ready)[2]
                if self._closed or not block:
                    return None
                wait = None if deadline is None else deadline - now_ts
                if wait is not None and wait <= 0:
                    return None
                if self._delayed:
                    until_due = max(0.0, self._delayed[0][0] - now_ts)
                    wait = until_due if wait is None else min(wait, until_due)
                self._cv.wait(timeout=wait)

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Pop the next ready job payload, or None on timeout / empty non-blocking read."""
        item = self.dequeue_item(block=block, timeout=timeout)
        return item.job if item is not None else None

    def shutdown(self) -> None:
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Drop everything queued (test isolation)."""
        with self._cv:
            self._ready.clear()
            self._delayed.clear()
            self._cv.notify_all()

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        return len(self._ready) + len(self._delayed)

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._cv:
            return {
                "depth": self.depth(),
                "ready": len(self._ready),
                "scheduled": len(self._delayed),
                "dropped": self._dropped,
                "shutdown": self._closed,
                "backend": "memory",
            }


__all__ = ["OutboxQueue", "OutboxItem"]
