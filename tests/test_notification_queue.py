"""Tests for the durable delivery queue."""

import pytest
from datetime import datetime, timedelta

from schoolnotify.notifications.config import QUEUE_KEY, NotificationConfig, QueueStatus
from schoolnotify.notifications.queue import DeliveryQueueStore


PAYLOAD = {"message": {"to": "parent@example.com", "subject": "Hi"}, "recipient_id": "student_1"}


class BrokenStore:
    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        pass


@pytest.fixture
def queue(store, clock):
    return DeliveryQueueStore(store, clock=clock)


class TestEnqueueDequeue:
    """Scheduling and claim semantics."""

    def test_enqueue_defaults(self, queue, clock):
        item = queue.enqueue(PAYLOAD)
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 0
        assert item.last_attempt_at is None
        assert item.next_attempt_at == clock.now()
        assert queue.size() == 1

    def test_scheduled_item_returned_exactly_once(self, queue, clock):
        item = queue.enqueue(PAYLOAD, scheduled_for=clock.now() + timedelta(minutes=10))

        assert queue.dequeue_due() is None
        clock.advance(minutes=9, seconds=59)
        assert queue.dequeue_due() is None

        clock.advance(seconds=1)
        claimed = queue.dequeue_due()
        assert claimed.id == item.id
        assert claimed.status == QueueStatus.PROCESSING
        assert queue.dequeue_due() is None

    def test_earliest_created_first(self, queue, clock):
        first = queue.enqueue(PAYLOAD)
        clock.advance(seconds=1)
        second = queue.enqueue(PAYLOAD)
        clock.advance(seconds=1)

        assert queue.dequeue_due().id == first.id
        assert queue.dequeue_due().id == second.id

    def test_empty_queue(self, queue):
        assert queue.dequeue_due() is None

    def test_naive_schedule_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue(PAYLOAD, scheduled_for=datetime(2024, 1, 15, 10, 0))

    def test_naive_now_rejected(self, queue):
        queue.enqueue(PAYLOAD)
        with pytest.raises(ValueError):
            queue.dequeue_due(datetime(2024, 1, 15, 10, 0))
        assert queue.items()[0].status == QueueStatus.PENDING

    def test_state_shared_through_store(self, store, clock):
        DeliveryQueueStore(store, clock=clock).enqueue(PAYLOAD)
        reopened = DeliveryQueueStore(store, clock=clock)
        assert reopened.size() == 1
        assert reopened.items()[0].payload == PAYLOAD


class TestRetry:
    """Failure bookkeeping and the backoff table."""

    def test_backoff_table(self, queue, clock):
        item = queue.enqueue(PAYLOAD)

        queue.mark_processing(item.id)
        queue.mark_failed(item.id, "timeout")
        failed_once = queue.get(item.id)
        assert failed_once.status == QueueStatus.PENDING
        assert failed_once.attempts == 1
        assert failed_once.error == "timeout"
        assert failed_once.next_attempt_at == clock.now() + timedelta(minutes=1)

        queue.mark_processing(item.id)
        queue.mark_failed(item.id, "timeout")
        assert queue.get(item.id).next_attempt_at == clock.now() + timedelta(minutes=5)

    def test_max_attempts_retains_failed_item(self, queue):
        item = queue.enqueue(PAYLOAD)
        for _ in range(3):
            queue.mark_processing(item.id)
            queue.mark_failed(item.id, "connection reset")

        failed = queue.get(item.id)
        assert failed.status == QueueStatus.FAILED
        assert failed.attempts == 3
        assert failed.error == "connection reset"
        assert [i.id for i in queue.items(QueueStatus.FAILED)] == [item.id]
        assert queue.dequeue_due() is None

    def test_failure_without_processing_counts_as_attempt(self, queue):
        item = queue.enqueue(PAYLOAD)
        queue.mark_failed(item.id, "boom")
        assert queue.get(item.id).attempts == 1

    def test_last_delay_repeats(self, store, clock):
        config = NotificationConfig(max_attempts=5, retry_delays_seconds=(10, 20))
        queue = DeliveryQueueStore(store, config=config, clock=clock)
        item = queue.enqueue(PAYLOAD)
        for _ in range(3):
            queue.mark_processing(item.id)
            queue.mark_failed(item.id, "timeout")
        assert queue.get(item.id).next_attempt_at == clock.now() + timedelta(seconds=20)

    def test_permanent_failure_is_terminal(self, queue):
        item = queue.enqueue(PAYLOAD)
        queue.mark_processing(item.id)
        queue.mark_failed(item.id, "rejected", permanent=True)
        failed = queue.get(item.id)
        assert failed.status == QueueStatus.FAILED
        assert failed.attempts == 1

    def test_retry_failed(self, queue, clock):
        item = queue.enqueue(PAYLOAD)
        queue.mark_failed(item.id, "rejected", permanent=True)

        assert queue.retry_failed() == 1
        requeued = queue.get(item.id)
        assert requeued.status == QueueStatus.PENDING
        assert requeued.attempts == 0
        assert queue.dequeue_due().id == item.id

    def test_retry_failed_by_id(self, queue):
        a = queue.enqueue(PAYLOAD)
        b = queue.enqueue(PAYLOAD)
        queue.mark_failed(a.id, "x", permanent=True)
        queue.mark_failed(b.id, "x", permanent=True)
        assert queue.retry_failed(a.id) == 1
        assert queue.get(b.id).status == QueueStatus.FAILED


class TestLifecycle:
    """Round trips, not-found handling, and reclaim."""

    def test_round_trip_is_net_zero(self, queue):
        before = queue.pending_count()
        item = queue.enqueue(PAYLOAD)
        queue.mark_processing(item.id)
        assert queue.mark_sent(item.id)

        assert queue.pending_count() == before
        assert queue.get(item.id) is None
        for status in QueueStatus:
            assert queue.items(status) == []

    def test_unknown_ids_report_not_found(self, queue):
        item = queue.enqueue(PAYLOAD)
        queue.mark_sent(item.id)

        assert queue.mark_processing(item.id) is False
        assert queue.mark_failed(item.id, "x") is False
        assert queue.mark_sent(item.id) is False
        assert queue.size() == 0

    def test_reclaim_stale(self, queue, clock):
        item = queue.enqueue(PAYLOAD)
        queue.dequeue_due()

        clock.advance(minutes=14)
        assert queue.reclaim_stale(timedelta(minutes=15)) == 0

        clock.advance(minutes=1)
        assert queue.reclaim_stale(timedelta(minutes=15)) == 1
        assert queue.get(item.id).status == QueueStatus.PENDING
        assert queue.dequeue_due().id == item.id

    def test_remove_and_clear(self, queue):
        a = queue.enqueue(PAYLOAD)
        queue.enqueue(PAYLOAD)
        assert queue.remove(a.id)
        assert not queue.remove(a.id)
        assert queue.clear() == 1
        assert queue.size() == 0

    def test_counts_and_stats(self, queue):
        a = queue.enqueue(PAYLOAD)
        queue.enqueue(PAYLOAD)
        queue.mark_failed(a.id, "x", permanent=True)

        assert queue.counts() == {"pending": 1, "processing": 0, "sent": 0, "failed": 1}
        assert queue.get_stats()["total"] == 2


class TestCorruptState:
    """Unreadable backing data is treated as an empty queue."""

    def test_garbage_blob(self, store, clock):
        store.set(QUEUE_KEY, b"\xff\xfe not json")
        queue = DeliveryQueueStore(store, clock=clock)
        assert queue.size() == 0
        assert queue.dequeue_due() is None

        queue.enqueue(PAYLOAD)
        assert queue.size() == 1

    def test_wrong_shape_blob(self, store, clock):
        store.set(QUEUE_KEY, b'{"items": []}')
        assert DeliveryQueueStore(store, clock=clock).size() == 0

    def test_unreadable_entry_dropped(self, store, clock):
        store.set(QUEUE_KEY, b'[{"status": "pending"}]')
        assert DeliveryQueueStore(store, clock=clock).size() == 0

    def test_store_read_error(self, clock):
        queue = DeliveryQueueStore(BrokenStore(), clock=clock)
        assert queue.size() == 0
        assert queue.mark_processing("missing") is False
