"""Redis-backed outbox (durable across restarts).

Selected with ``OUTBOX_USE_REDIS=true``. Layout:
 1. Sorted set ``redis_ready_key``: score = priority * 1e12 + seq, so
    ``BZPOPMIN`` yields highest priority first and FIFO within a priority.
 2. Sorted set ``redis_scheduled_key``: score = ready_at epoch seconds.

Due scheduled entries are moved to the ready set on every dequeue. When Redis
cannot be reached the queue degrades to an in-memory ``OutboxQueue`` and
reports ``redis_active: False`` in its snapshot.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Optional

import redis

from escortcore.config import OUTBOX_SETTINGS
from escortcore.jobs.outbox import OutboxItem, OutboxQueue
from escortcore.jobs.outbox_job import JOB_TYPES
from escortcore.utils import get_logger

logger = get_logger(__name__)

_PRIORITY_STRIDE = 1_000_000_000_000


class RedisOutboxQueue:
    def __init__(self, *, url: str | None = None) -> None:
        self._url = url or str(OUTBOX_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key = str(OUTBOX_SETTINGS.get("redis_ready_key", "escortcore:outbox:ready"))
        self._scheduled_key = str(OUTBOX_SETTINGS.get("redis_scheduled_key", "escortcore:outbox:scheduled"))
        self._seq_key = f"{self._ready_key}:seq"
        priorities_cfg = OUTBOX_SETTINGS.get("priorities", {})
        self._priority_map: dict[str, int] = dict(priorities_cfg) if isinstance(priorities_cfg, dict) else {"normal": 5}
        self._warn_depth = int(OUTBOX_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._fallback = OutboxQueue()
        self._lock = threading.RLock()
        self._client: Optional[redis.Redis] = None
        self._active = False
        self._closed = False
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.from_url(self._url)
            self._client.ping()
            self._active = True
            logger.info("Outbox connected to Redis", url=self._url)
        except (redis.RedisError, ConnectionError) as e:
            self._client = None
            self._active = False
            logger.warning("Redis unavailable, outbox using in-memory fallback", error=str(e))

    def health_check(self) -> bool:
        with self._lock:
            if self._client is None:
                self._connect()
                return self._active
            try:
                self._client.ping()
                if not self._active:
                    logger.info("Redis connection restored")
                self._active = True
            except (redis.RedisError, ConnectionError) as e:
                if self._active:
                    logger.warning("Redis connection lost, outbox using in-memory fallback", error=str(e))
                self._active = False
            return self._active

    # ----------------------------- (de)serialisation ----------------------------- #
    @staticmethod
    def _encode(item: OutboxItem) -> str:
        job = item.job
        payload = job.to_dict() if hasattr(job, "to_dict") else {"data": str(job)}
        return json.dumps({
            "job_type": type(job).__name__,
            "job": payload,
            "priority_label": item.priority_label,
            "priority_value": item.priority_value,
            "enqueued_at": item.enqueued_at,
            "ready_at": item.ready_at,
            "seq": item.seq,
            "attempts": item.attempts,
        })

    @staticmethod
    def _decode(raw: bytes | str) -> OutboxItem:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        job_cls = JOB_TYPES.get(data.get("job_type", ""))
        if job_cls is None:
            logger.warning("Unknown outbox job type", job_type=data.get("job_type"))
            job: Any = data.get("job")
        else:
            job = job_cls(**data.get("job", {}))
        return OutboxItem(
            job=job,
            priority_label=data.get("priority_label", "normal"),
            priority_value=int(data.get("priority_value", 5)),
            enqueued_at=float(data.get("enqueued_at", time.time())),
            ready_at=float(data.get("ready_at", time.time())),
            seq=int(data.get("seq", 0)),
            attempts=int(data.get("attempts", 0)),
        )

    @staticmethod
    def _ready_score(item: OutboxItem) -> int:
        return item.priority_value * _PRIORITY_STRIDE + item.seq

    def _promote_due(self) -> None:
        assert self._client is not None
        due = self._client.zrangebyscore(self._scheduled_key, 0, time.time())
        for raw in due or []:
            item = self._decode(raw)
            self._client.zadd(self._ready_key, {raw: self._ready_score(item)})
            self._client.zrem(self._scheduled_key, raw)

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0, attempts: int = 0) -> OutboxItem:
        if priority not in self._priority_map:
            raise ValueError(f"Unknown priority '{priority}'")
        with self._lock:
            if self._closed:
                raise RuntimeError("Outbox closed")
            if not self.health_check() or self._client is None:
                return self._fallback.enqueue(job, priority=priority, delay_seconds=delay_seconds, attempts=attempts)
            try:
                now_ts = time.time()
                item = OutboxItem(
                    job=job,
                    priority_label=priority,
                    priority_value=self._priority_map[priority],
                    enqueued_at=now_ts,
                    ready_at=now_ts + max(0.0, delay_seconds),
                    seq=int(self._client.incr(self._seq_key)),
                    attempts=attempts,
                )
                raw = self._encode(item)
                if item.ready_at <= now_ts:
                    self._client.zadd(self._ready_key, {raw: self._ready_score(item)})
                else:
                    self._client.zadd(self._scheduled_key, {raw: item.ready_at})
                depth = self.depth()
                if depth >= self._warn_depth:
                    logger.warning("Outbox depth warning", depth=depth)
                return item
            except redis.RedisError as e:
                logger.error("Redis error during enqueue", error=str(e))
                self._active = False
                return self._fallback.enqueue(job, priority=priority, delay_seconds=delay_seconds, attempts=attempts)

    def dequeue_item(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[OutboxItem]:
        local = self._fallback.dequeue_item(block=False)
        if local is not None:
            return local
        if not self.health_check() or self._client is None:
            return self._fallback.dequeue_item(block=block, timeout=timeout)
        try:
            self._promote_due()
            if block:
                # BZPOPMIN takes whole seconds; 0 would block forever.
                wait = 1 if timeout is None else max(1, int(timeout))
                result = self._client.bzpopmin([self._ready_key], timeout=wait)
                if not result:
                    return None
                _, raw, _ = result
            else:
                popped = self._client.zpopmin(self._ready_key, 1)
                if not popped:
                    return None
                raw, _ = popped[0]
            return self._decode(raw)
        except redis.RedisError as e:
            logger.error("Redis error during dequeue", error=str(e))
            self._active = False
            return self._fallback.dequeue_item(block=block, timeout=timeout)

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        item = self.dequeue_item(block=block, timeout=timeout)
        return item.job if item is not None else None

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            self._fallback.shutdown()

    def purge(self) -> None:
        with self._lock:
            self._fallback.purge()
            if not self.health_check() or self._client is None:
                return
            try:
                self._client.delete(self._ready_key, self._scheduled_key)
            except redis.RedisError as e:
                logger.error("Error purging Redis outbox", error=str(e))
                self._active = False

    def depth(self) -> int:
        if not self._active or self._client is None:
            return self._fallback.depth()
        try:
            return int(self._client.zcard(self._ready_key)) + int(self._client.zcard(self._scheduled_key)) + self._fallback.depth()
        except redis.RedisError as e:
            logger.error("Error reading outbox depth", error=str(e))
            self._active = False
            return self._fallback.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if not self.health_check() or self._client is None:
                snap = self._fallback.snapshot()
                snap["redis_active"] = False
                return snap
            try:
                ready = int(self._client.zcard(self._ready_key))
                scheduled = int(self._client.zcard(self._scheduled_key))
            except redis.RedisError as e:
                logger.error("Error reading outbox snapshot", error=str(e))
                self._active = False
                snap = self._fallback.snapshot()
                snap["redis_active"] = False
                return snap
            return {
                "depth": ready + scheduled + self._fallback.depth(),
                "ready": ready,
                "scheduled": scheduled,
                "shutdown": self._closed,
                "backend": "redis",
                "redis_active": True,
            }


__all__ = ["RedisOutboxQueue"]
