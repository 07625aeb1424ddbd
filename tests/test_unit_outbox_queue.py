import threading
import time

import pytest

from escortcore.jobs.outbox import OutboxQueue
from escortcore.jobs.outbox_job import DistributionJob, NotificationJob


def _note(n: int) -> NotificationJob:
    return NotificationJob(event_kind="job_assigned", recipient_id=n, recipient_kind="provider")


def test_priority_then_fifo_ordering():
    q = OutboxQueue()
    q.enqueue(_note(1), priority="low")
    q.enqueue(_note(2), priority="high")
    q.enqueue(_note(3), priority="normal")
    q.enqueue(_note(4), priority="high")
    snap = q.snapshot()
    assert snap.get("ready") == 4
    assert snap.get("depth") == 4
    assert snap.get("backend") == "memory"

    order = [q.dequeue(block=False).recipient_id for _ in range(4)]
    assert order == [2, 4, 3, 1]
    assert q.dequeue(block=False) is None


def test_delayed_item_does_not_block_ready_work():
    q = OutboxQueue()
    q.enqueue(_note(1), priority="high", delay_seconds=0.3)
    q.enqueue(_note(2), priority="low")

    assert q.snapshot()["scheduled"] == 1
    assert q.dequeue(block=False).recipient_id == 2
    assert q.dequeue(block=False) is None
    item = q.dequeue_item(timeout=2)
    assert item is not None and item.job.recipient_id == 1


def test_blocking_dequeue_wakes_on_enqueue():
    q = OutboxQueue()
    got = []

    def _consume():
        got.append(q.dequeue(timeout=5))

    t = threading.Thread(target=_consume)
    t.start()
    time.sleep(0.1)
    q.enqueue(DistributionJob(job_id=9, provider_id=3, paid_amount="200.00"))
    t.join(timeout=5)
    assert got and got[0].job_id == 9


def test_unknown_priority_and_closed_queue():
    q = OutboxQueue()
    with pytest.raises(ValueError):
        q.enqueue(_note(1), priority="urgent")
    q.shutdown()
    with pytest.raises(RuntimeError):
        q.enqueue(_note(1))
    assert q.dequeue(timeout=0.1) is None


def test_capacity_limit_counts_drops():
    q = OutboxQueue(max_in_memory=2)
    q.enqueue(_note(1))
    q.enqueue(_note(2))
    with pytest.raises(OverflowError):
        q.enqueue(_note(3))
    assert q.snapshot()["dropped"] == 1


def test_purge_empties_both_heaps():
    q = OutboxQueue()
    q.enqueue(_note(1))
    q.enqueue(_note(2), delay_seconds=60)
    q.purge()
    assert len(q) == 0


def test_job_keys():
    assert _note(5).key() == "notify:job_assigned:provider:5"
    assert DistributionJob(job_id=7, provider_id=1, paid_amount="1.00").key() == "distribute:7"
