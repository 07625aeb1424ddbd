"""Outbox worker delivery, redelivery with backoff, and the post-commit producers."""
import time
from decimal import Decimal

import pytest

from conftest import RecordingDistribution, RecordingNotifier
from escortcore.jobs import worker_outbox
from escortcore.jobs.outbox import OutboxQueue
from escortcore.jobs.outbox_job import DistributionJob, NotificationJob
from escortcore.jobs.worker_outbox import LAST_FAILURES, OutboxWorker, create_queue
from escortcore.services.distribution import QueuedDistribution
from escortcore.services.notifications import QueueNotifier, notify_safely


@pytest.fixture(autouse=True)
def _reset_failures():
    LAST_FAILURES.clear()
    yield
    LAST_FAILURES.clear()


def test_delivers_notifications_and_payouts():
    queue = OutboxQueue()
    notifier = RecordingNotifier()
    distribution = RecordingDistribution()
    worker = OutboxWorker(queue, notifier=notifier, distribution=distribution)

    QueueNotifier(queue).send("job_assigned", 4, "provider", {"job_id": 1})
    QueuedDistribution(queue).distribute(1, 4, Decimal("200.00"))

    while (item := queue.dequeue_item(block=False)) is not None:
        assert worker.process(item)

    assert notifier.sent == [("job_assigned", 4, "provider", {"job_id": 1})]
    assert distribution.calls == [(1, 4, Decimal("200.00"))]


def test_notification_priority_comes_from_event_kind():
    queue = OutboxQueue()
    producer = QueueNotifier(queue)
    producer.send("commission_credited", 1, "provider", {})
    producer.send("job_assigned", 2, "provider", {})
    assert queue.dequeue_item(block=False).priority_label == "high"
    assert queue.dequeue_item(block=False).priority_label == "normal"


def test_producers_tag_jobs_with_the_marketplace_job():
    queue = OutboxQueue()
    QueueNotifier(queue).send("job_assigned", 4, "provider", {"job_id": 12})
    QueueNotifier(queue).send("job_assigned", 4, "provider", {})
    QueuedDistribution(queue).distribute(12, 4, Decimal("200.00"))

    tagged = [queue.dequeue_item(block=False).job for _ in range(3)]
    assert sorted(str(j.correlation_id) for j in tagged) == ["None", "job:12", "job:12"]


def test_failure_record_carries_correlation_id():
    queue = OutboxQueue()
    worker = OutboxWorker(queue, distribution=RecordingDistribution(fail=True), max_attempts=1)
    QueuedDistribution(queue).distribute(7, 1, Decimal("10.00"))

    assert not worker.process(queue.dequeue_item(block=False))
    assert LAST_FAILURES[-1]["correlation_id"] == "job:7"


def test_failed_delivery_is_requeued_with_delay(monkeypatch):
    monkeypatch.setattr(worker_outbox, "redelivery_delay", lambda attempt: 30.0)
    queue = OutboxQueue()
    worker = OutboxWorker(queue, notifier=RecordingNotifier(fail=True), max_attempts=3)
    queue.enqueue(NotificationJob(event_kind="job_assigned", recipient_id=1, recipient_kind="provider"), priority="high")

    assert not worker.process(queue.dequeue_item(block=False))

    snap = queue.snapshot()
    assert snap["scheduled"] == 1
    assert snap["ready"] == 0
    assert LAST_FAILURES[-1]["attempts"] == 1
    assert LAST_FAILURES[-1]["key"] == "notify:job_assigned:provider:1"


def test_delivery_abandoned_after_max_attempts():
    queue = OutboxQueue()
    worker = OutboxWorker(queue, distribution=RecordingDistribution(fail=True), max_attempts=2)
    item = queue.enqueue(DistributionJob(job_id=3, provider_id=1, paid_amount="10.00"), attempts=1)
    queue.dequeue_item(block=False)

    assert not worker.process(item)
    assert len(queue) == 0
    assert LAST_FAILURES[-1]["attempts"] == 2


def test_worker_thread_drains_queue():
    queue = OutboxQueue()
    notifier = RecordingNotifier()
    worker = OutboxWorker(queue, notifier=notifier, poll_timeout=0.05)
    worker.start()
    try:
        QueueNotifier(queue).send("provider_assigned", 8, "customer", {"job_id": 2})
        for _ in range(100):
            if notifier.sent:
                break
            time.sleep(0.02)
    finally:
        worker.stop(timeout=2)
    assert notifier.kinds() == ["provider_assigned"]


def test_notify_safely_swallows_transport_errors():
    assert notify_safely(RecordingNotifier(fail=True), "job_assigned", 1, "provider", {}) is False
    assert notify_safely(None, "job_assigned", 1, "provider", {}) is False
    assert notify_safely(RecordingNotifier(), "job_assigned", None, "provider", {}) is False
    assert notify_safely(RecordingNotifier(), "job_assigned", 1, "provider", {}) is True


def test_create_queue_defaults_to_memory():
    assert isinstance(create_queue(), OutboxQueue)
