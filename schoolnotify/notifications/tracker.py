"""Delivery outcome history and analytics."""

from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
import logging
import threading
from typing import Optional

from schoolnotify.db.store import KeyValueStore
from schoolnotify.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    HISTORY_KEY,
    DeliveryStatus,
    NotificationConfig,
)
from schoolnotify.notifications.models import DeliveryAnalytics, DeliveryRecord, require_aware
from schoolnotify.notifications.sender import Clock, SystemClock
from schoolnotify.notifications.state import BlobState

logger = logging.getLogger(__name__)


class DeliveryTracker:
    """Append-only delivery log capped at ``config.history_max`` records."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
        key: str = HISTORY_KEY,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()
        self._state: BlobState[list] = BlobState(store, key, list, list)
        self._lock = threading.RLock()

    def _load(self) -> list[DeliveryRecord]:
        records = []
        for raw in self._state.load():
            try:
                records.append(DeliveryRecord.from_dict(raw))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.error("Skipping unreadable delivery record %r: %s", raw, exc)
        return records

    def record(self, record: DeliveryRecord) -> None:
        """Append a record, evicting the oldest beyond the cap."""
        with self._lock:
            history = self._state.load()
            history.append(record.to_dict())
            overflow = len(history) - self.config.history_max
            if overflow > 0:
                del history[:overflow]
            self._state.save(history)

        logger.debug(
            "Recorded %s for notification %s to %s",
            record.status.value, record.notification_id, record.recipient_id,
        )

    def record_event(
        self,
        message_id: str,
        status: DeliveryStatus,
        now: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> Optional[DeliveryRecord]:
        """Append a provider callback (delivered, opened, ...) for a known message."""
        if not message_id:
            return None
        with self._lock:
            for previous in reversed(self._load()):
                if previous.message_id == message_id:
                    break
            else:
                logger.warning("No delivery found for provider message %s", message_id)
                return None

            event = replace(previous, status=status, timestamp=now or self.clock.now(), error=error)
            self.record(event)
            return event

    def history(self, limit: int = 50, recipient_id: Optional[str] = None) -> list[DeliveryRecord]:
        """Most recent records first."""
        if limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            records = self._load()
        if recipient_id is not None:
            records = [r for r in records if r.recipient_id == recipient_id]
        return list(reversed(records))[:limit]

    def analytics(
        self,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
        recipient_id: Optional[str] = None,
    ) -> DeliveryAnalytics:
        """Aggregate counts and rates over the trailing window."""
        window_days = self.config.analytics_days if window_days is None else window_days
        now = require_aware(now or self.clock.now())
        period_start = now - timedelta(days=window_days)

        with self._lock:
            records = self._load()

        counts: dict[DeliveryStatus, int] = defaultdict(int)
        by_type: dict[str, int] = defaultdict(int)
        for record in records:
            if record.timestamp < period_start or record.timestamp > now:
                continue
            if recipient_id is not None and record.recipient_id != recipient_id:
                continue
            counts[record.status] += 1
            by_type[record.notification_type.value] += 1

        stats = DeliveryAnalytics(
            total_sent=counts[DeliveryStatus.SENT],
            total_delivered=counts[DeliveryStatus.DELIVERED],
            total_failed=counts[DeliveryStatus.FAILED],
            total_bounced=counts[DeliveryStatus.BOUNCED],
            total_opened=counts[DeliveryStatus.OPENED],
            total_clicked=counts[DeliveryStatus.CLICKED],
            by_type=dict(by_type),
            period_start=period_start,
            period_end=now,
        )
        stats.calculate_rates()
        return stats

    def size(self) -> int:
        with self._lock:
            return len(self._state.load())

    def clear(self) -> int:
        with self._lock:
            count = len(self._state.load())
            self._state.save([])
        return count
