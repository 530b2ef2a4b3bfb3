"""Digest batching: hold deferred notifications and flush them on schedule."""

from datetime import datetime, timedelta
import logging
import threading
from typing import Optional

from schoolnotify.db.store import KeyValueStore
from schoolnotify.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    DIGEST_KEY,
    DeliveryStatus,
    DigestFrequency,
    NotificationConfig,
)
from schoolnotify.notifications.models import (
    DeliveryRecord,
    DigestItem,
    DigestMode,
    RenderedMessage,
    format_timestamp,
    parse_timestamp,
    require_aware,
)
from schoolnotify.notifications.preferences import NotificationPolicyEngine
from schoolnotify.notifications.sender import Clock, Sender, SystemClock, deliver
from schoolnotify.notifications.state import BlobState
from schoolnotify.notifications.templates import render_digest
from schoolnotify.notifications.tracker import DeliveryTracker

logger = logging.getLogger(__name__)


def digest_trigger(
    digest_mode: DigestMode,
    local_now: datetime,
    window: timedelta,
) -> Optional[datetime]:
    """Return the scheduled flush instant ``local_now`` falls after, if any.

    A schedule matches when ``local_now`` lies in ``[trigger, trigger + window)``.
    The window absorbs coarse tick intervals and may span midnight; weekly
    digests additionally require the trigger to land on ``weekday``.
    """
    try:
        minute_of_day = digest_mode.minute_of_day
    except (ValueError, AttributeError):
        return None

    trigger = local_now.replace(
        hour=minute_of_day // 60,
        minute=minute_of_day % 60,
        second=0,
        microsecond=0,
    )
    if trigger > local_now:
        trigger -= timedelta(days=1)

    if local_now - trigger >= window:
        return None
    if digest_mode.frequency == DigestFrequency.WEEKLY and trigger.weekday() != digest_mode.weekday:
        return None
    return trigger


class DigestAggregator:
    """Per-recipient digest lists, persisted as one blob.

    State layout: ``{"queues": {recipient_id: [item, ...]},
    "last_flush": {recipient_id: iso timestamp}}``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: NotificationPolicyEngine,
        sender: Sender,
        tracker: Optional[DeliveryTracker] = None,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
        key: str = DIGEST_KEY,
    ):
        self.policy = policy
        self.sender = sender
        self.tracker = tracker
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()
        self._state: BlobState[dict] = BlobState(store, key, dict, dict)
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()

    def _load(self) -> dict:
        state = self._state.load()
        queues = state.get("queues")
        last_flush = state.get("last_flush")
        return {
            "queues": queues if isinstance(queues, dict) else {},
            "last_flush": last_flush if isinstance(last_flush, dict) else {},
        }

    @staticmethod
    def _items(raw_items: list) -> list[DigestItem]:
        items = []
        for raw in raw_items or []:
            try:
                items.append(DigestItem.from_dict(raw))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.error("Skipping unreadable digest item %r: %s", raw, exc)
        return items

    def capture(self, recipient_id: str, item: DigestItem) -> None:
        """Append an item to the recipient's pending digest. No dedup."""
        with self._lock:
            state = self._load()
            state["queues"].setdefault(recipient_id, []).append(item.to_dict())
            self._state.save(state)

        logger.info(
            "Added notification %s to digest for %s",
            item.notification.notification_id, recipient_id,
        )

    def pending(self, recipient_id: str) -> list[DigestItem]:
        with self._lock:
            return self._items(self._load()["queues"].get(recipient_id, []))

    def pending_counts(self) -> dict[str, int]:
        with self._lock:
            queues = self._load()["queues"]
        return {rid: len(items) for rid, items in queues.items() if items}

    def discard(self, recipient_id: str) -> int:
        """Drop a recipient's pending items without sending them."""
        with self._lock:
            state = self._load()
            removed = state["queues"].pop(recipient_id, None) or []
            self._state.save(state)
        return len(removed)

    def last_flush(self, recipient_id: str) -> Optional[datetime]:
        with self._lock:
            return parse_timestamp(self._load()["last_flush"].get(recipient_id))

    def tick(self, now: Optional[datetime] = None) -> int:
        """Flush every recipient whose digest schedule is due. Returns flush count."""
        now = require_aware(now or self.clock.now())
        window = timedelta(minutes=self.config.digest_window_minutes)
        flushed = 0

        for recipient_id in list(self.pending_counts()):
            prefs = self.policy.get_preferences(recipient_id)
            if not prefs.digest_mode.enabled:
                continue

            trigger = digest_trigger(prefs.digest_mode, prefs.local_time(now), window)
            if trigger is None:
                continue

            last = self.last_flush(recipient_id)
            if last is not None and last >= trigger:
                continue

            if self.flush(recipient_id, now):
                flushed += 1

        return flushed

    def flush(self, recipient_id: str, now: Optional[datetime] = None) -> bool:
        """Send one composite message for the recipient's pending items.

        The list is cleared only after the Sender succeeds; items captured
        while the send is in flight stay queued for the next digest.
        """
        now = require_aware(now or self.clock.now())
        with self._flush_lock:
            with self._lock:
                raw_items = self._load()["queues"].get(recipient_id, [])
            items = self._items(raw_items)
            if not items:
                return False

            prefs = self.policy.get_preferences(recipient_id)
            if not prefs.contact_address:
                logger.warning("Digest for %s skipped: no contact address", recipient_id)
                return False

            content = render_digest(items, prefs.local_time(now), self.config.school_name)
            message = RenderedMessage(
                to=prefs.contact_address,
                subject=content.subject,
                html=content.html,
                text=content.text,
            )
            result = deliver(self.sender, message)

            if not result.success:
                logger.error(
                    "Digest delivery to %s failed, keeping %d item(s): %s",
                    recipient_id, len(items), result.error,
                )
                return False

            with self._lock:
                state = self._load()
                remaining = state["queues"].get(recipient_id, [])[len(raw_items):]
                if remaining:
                    state["queues"][recipient_id] = remaining
                else:
                    state["queues"].pop(recipient_id, None)
                state["last_flush"][recipient_id] = format_timestamp(now)
                self._state.save(state)

        logger.info("Digest sent to %s with %d notification(s)", recipient_id, len(items))

        if self.tracker is not None:
            for item in items:
                self.tracker.record(DeliveryRecord(
                    notification_id=item.notification.notification_id,
                    notification_type=item.notification.type,
                    recipient_id=recipient_id,
                    address=prefs.contact_address,
                    status=DeliveryStatus.SENT,
                    message_id=result.message_id or "",
                    timestamp=now,
                ))
        return True
