"""Queue processor: drains due items and feeds outcomes back to the store."""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Optional

from schoolnotify.logging_config.context import DeliveryContext
from schoolnotify.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    DeliveryStatus,
    NotificationConfig,
    NotificationType,
    QueueStatus,
)
from schoolnotify.notifications.models import DeliveryRecord, QueueItem, require_aware
from schoolnotify.notifications.queue import DeliveryQueueStore
from schoolnotify.notifications.sender import Clock, Sender, SystemClock, deliver
from schoolnotify.notifications.tracker import DeliveryTracker

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Counts for one drain pass."""

    processed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    reclaimed: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "retried": self.retried,
            "failed": self.failed,
            "reclaimed": self.reclaimed,
        }


class QueueProcessor:
    """Single consumer of a DeliveryQueueStore."""

    def __init__(
        self,
        queue: DeliveryQueueStore,
        sender: Sender,
        tracker: Optional[DeliveryTracker] = None,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.queue = queue
        self.sender = sender
        self.tracker = tracker
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()

    def drain(self, now: Optional[datetime] = None) -> ProcessResult:
        """Process every item due at ``now`` until the queue has none left.

        Stale processing items are reclaimed first. A pass handles at most
        as many items as the queue held when it started, so items
        rescheduled into the past cannot spin the loop.
        """
        now = require_aware(now or self.clock.now())
        result = ProcessResult()

        timeout = self.config.processing_timeout_seconds
        if timeout:
            result.reclaimed = self.queue.reclaim_stale(timedelta(seconds=timeout), now=now)

        budget = self.queue.size()
        while result.processed < budget:
            item = self.queue.dequeue_due(now)
            if item is None:
                break
            result.processed += 1
            self._process(item, result)

        if result.processed:
            logger.info(
                "Queue drain: %d processed, %d sent, %d retrying, %d failed",
                result.processed, result.sent, result.retried, result.failed,
                extra=result.to_dict(),
            )
        return result

    def _process(self, item: QueueItem, result: ProcessResult) -> None:
        payload = item.payload
        with DeliveryContext(
            recipient_id=str(payload.get("recipient_id", "")),
            notification_id=str(payload.get("notification_id", "")),
            queue_item_id=item.id,
        ):
            if not self.queue.mark_processing(item.id):
                return

            message = item.message
            if not message.to:
                self.queue.mark_failed(item.id, "payload has no recipient address", permanent=True)
                self._record(item, DeliveryStatus.FAILED, error="payload has no recipient address")
                result.failed += 1
                return

            outcome = deliver(self.sender, message)

            if outcome.success:
                self.queue.mark_sent(item.id)
                self._record(item, DeliveryStatus.SENT, message_id=outcome.message_id or "")
                result.sent += 1
                return

            error = outcome.error or "delivery failed"
            self.queue.mark_failed(item.id, error, permanent=outcome.permanent)
            updated = self.queue.get(item.id)
            if updated is not None and updated.status == QueueStatus.FAILED:
                self._record(item, DeliveryStatus.FAILED, error=error)
                result.failed += 1
            else:
                result.retried += 1

    def _record(
        self,
        item: QueueItem,
        status: DeliveryStatus,
        message_id: str = "",
        error: Optional[str] = None,
    ) -> None:
        if self.tracker is None:
            return
        payload = item.payload
        try:
            notification_type = NotificationType(payload.get("notification_type"))
        except ValueError:
            logger.warning("Queue item %s has no valid notification type, not recorded", item.id)
            return

        self.tracker.record(DeliveryRecord(
            notification_id=str(payload.get("notification_id", item.id)),
            notification_type=notification_type,
            recipient_id=str(payload.get("recipient_id", "")),
            address=item.message.to,
            status=status,
            message_id=message_id,
            timestamp=self.clock.now(),
            error=error,
        ))
