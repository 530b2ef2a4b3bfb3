"""Durable delivery queue with bounded retry."""

from collections import defaultdict
from datetime import datetime, timedelta
import logging
import threading
from typing import Optional

from schoolnotify.db.store import KeyValueStore
from schoolnotify.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    QUEUE_KEY,
    NotificationConfig,
    QueueStatus,
)
from schoolnotify.notifications.models import QueueItem, require_aware
from schoolnotify.notifications.sender import Clock, SystemClock
from schoolnotify.notifications.state import BlobState

logger = logging.getLogger(__name__)


class DeliveryQueueStore:
    """Pending delivery attempts persisted as one blob.

    Items are kept in creation order. Every read-modify-write runs under
    a single lock so a claimed item is never handed out twice within the
    process. Sent items are removed; failed items stay for inspection.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
        key: str = QUEUE_KEY,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()
        self._state: BlobState[list] = BlobState(store, key, list, list)
        self._lock = threading.RLock()

    def _load(self) -> list[QueueItem]:
        items = []
        for raw in self._state.load():
            try:
                items.append(QueueItem.from_dict(raw))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.error("Dropping unreadable queue entry %r: %s", raw, exc)
        return items

    def _save(self, items: list[QueueItem]) -> None:
        self._state.save([item.to_dict() for item in items])

    def _backoff(self, attempts: int) -> timedelta:
        delays = self.config.retry_delays_seconds
        index = min(max(attempts - 1, 0), len(delays) - 1)
        return timedelta(seconds=delays[index])

    def enqueue(self, payload: dict, scheduled_for: Optional[datetime] = None) -> QueueItem:
        """Add a delivery request, due now or at ``scheduled_for``."""
        if scheduled_for is not None:
            require_aware(scheduled_for, "scheduled_for")
        now = self.clock.now()
        item = QueueItem(
            payload=payload,
            next_attempt_at=scheduled_for or now,
            created_at=now,
        )
        with self._lock:
            items = self._load()
            items.append(item)
            self._save(items)

        logger.info("Queued delivery %s due at %s", item.id, item.next_attempt_at.isoformat())
        return item

    def dequeue_due(self, now: Optional[datetime] = None) -> Optional[QueueItem]:
        """Claim the earliest-created due item, or None if nothing is due."""
        now = require_aware(now or self.clock.now())
        with self._lock:
            items = self._load()
            due = [item for item in items if item.is_due(now)]
            if not due:
                return None

            item = min(due, key=lambda i: i.created_at)
            item.status = QueueStatus.PROCESSING
            item.last_attempt_at = now
            self._save(items)
            return item

    def mark_processing(self, item_id: str) -> bool:
        """Record the start of a delivery attempt."""
        with self._lock:
            items = self._load()
            item = self._find(items, item_id)
            if item is None:
                logger.warning("Queue item not found: %s", item_id)
                return False

            item.status = QueueStatus.PROCESSING
            item.attempts += 1
            item.last_attempt_at = self.clock.now()
            self._save(items)
            return True

    def mark_sent(self, item_id: str) -> bool:
        """Remove a delivered item."""
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                logger.warning("Queue item not found: %s", item_id)
                return False
            self._save(remaining)

        logger.info("Queue item %s sent", item_id)
        return True

    def mark_failed(self, item_id: str, reason: str, permanent: bool = False) -> bool:
        """Reschedule a failed attempt or retire the item.

        A failure reported for an item that was not marked processing
        counts as an attempt in its own right.
        """
        now = self.clock.now()
        with self._lock:
            items = self._load()
            item = self._find(items, item_id)
            if item is None:
                logger.warning("Queue item not found: %s", item_id)
                return False

            if item.status != QueueStatus.PROCESSING:
                item.attempts += 1
                item.last_attempt_at = now
            item.error = reason

            if permanent or item.attempts >= self.config.max_attempts:
                item.status = QueueStatus.FAILED
                logger.error(
                    "Queue item %s failed after %d attempt(s): %s",
                    item_id, item.attempts, reason,
                )
            else:
                item.status = QueueStatus.PENDING
                item.next_attempt_at = now + self._backoff(item.attempts)
                logger.warning(
                    "Queue item %s attempt %d failed (%s), retrying at %s",
                    item_id, item.attempts, reason, item.next_attempt_at.isoformat(),
                )
            self._save(items)
            return True

    def reclaim_stale(self, timeout: timedelta, now: Optional[datetime] = None) -> int:
        """Return items stuck in processing for longer than ``timeout`` to pending."""
        now = require_aware(now or self.clock.now())
        count = 0
        with self._lock:
            items = self._load()
            for item in items:
                if item.status != QueueStatus.PROCESSING:
                    continue
                started = item.last_attempt_at or item.created_at
                if now - started >= timeout:
                    item.status = QueueStatus.PENDING
                    item.next_attempt_at = now
                    item.error = item.error or "reclaimed after processing timeout"
                    count += 1
            if count:
                self._save(items)

        if count:
            logger.warning("Reclaimed %d stale processing item(s)", count)
        return count

    def retry_failed(self, item_id: Optional[str] = None) -> int:
        """Requeue failed items (all, or one by id) with a fresh attempt budget."""
        now = self.clock.now()
        count = 0
        with self._lock:
            items = self._load()
            for item in items:
                if item.status != QueueStatus.FAILED:
                    continue
                if item_id is not None and item.id != item_id:
                    continue
                item.status = QueueStatus.PENDING
                item.attempts = 0
                item.next_attempt_at = now
                count += 1
            if count:
                self._save(items)
        return count

    def get(self, item_id: str) -> Optional[QueueItem]:
        with self._lock:
            return self._find(self._load(), item_id)

    def remove(self, item_id: str) -> bool:
        """Administrative purge of a single item."""
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                return False
            self._save(remaining)
            return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._load())
            self._save([])
            return count

    def items(self, status: Optional[QueueStatus] = None) -> list[QueueItem]:
        with self._lock:
            items = self._load()
        if status is None:
            return items
        return [item for item in items if item.status == status]

    def size(self) -> int:
        return len(self.items())

    def counts(self) -> dict[str, int]:
        """Item counts keyed by status value."""
        by_status: dict[str, int] = defaultdict(int)
        for status in QueueStatus:
            by_status[status.value] = 0
        for item in self.items():
            by_status[item.status.value] += 1
        return dict(by_status)

    def pending_count(self) -> int:
        return self.counts()[QueueStatus.PENDING.value]

    def get_stats(self) -> dict:
        """Queue statistics for operator dashboards."""
        counts = self.counts()
        return {
            "total": sum(counts.values()),
            **counts,
        }

    @staticmethod
    def _find(items: list[QueueItem], item_id: str) -> Optional[QueueItem]:
        for item in items:
            if item.id == item_id:
                return item
        return None
