"""Recipient notification preferences and delivery policy."""

from dataclasses import replace
from datetime import datetime
import logging
import threading
from typing import Optional

from schoolnotify.db.store import KeyValueStore
from schoolnotify.notifications.config import (
    PREFERENCES_KEY_PREFIX,
    TYPE_CONFIGS,
    DigestFrequency,
    NotificationType,
)
from schoolnotify.notifications.models import (
    DigestMode,
    NotificationPreferences,
    QuietHours,
    TypePreferences,
    Verdict,
)
from schoolnotify.notifications.state import BlobState

logger = logging.getLogger(__name__)


def default_preferences(recipient_id: str) -> NotificationPreferences:
    """Preferences synthesized for a recipient seen for the first time.

    Delivery stays off until the recipient turns the master switch on
    and supplies an address.
    """
    types = TypePreferences()
    for notification_type, type_config in TYPE_CONFIGS.items():
        types.set_enabled(notification_type, type_config.get("default_enabled", False))
    return NotificationPreferences(recipient_id=recipient_id, types=types)


class NotificationPolicyEngine:
    """Evaluates whether, and how, a notification reaches a recipient."""

    def __init__(self, store: KeyValueStore, key_prefix: str = PREFERENCES_KEY_PREFIX):
        self.store = store
        self.key_prefix = key_prefix
        self._lock = threading.RLock()

    def _state(self, recipient_id: str) -> BlobState[dict]:
        return BlobState(self.store, f"{self.key_prefix}{recipient_id}", dict, dict)

    def get_preferences(self, recipient_id: str) -> NotificationPreferences:
        """Get preferences, creating and persisting defaults if missing."""
        with self._lock:
            state = self._state(recipient_id)
            raw = state.load()
            if raw:
                try:
                    return NotificationPreferences.from_dict(raw)
                except (KeyError, ValueError, TypeError, AttributeError) as exc:
                    logger.error("Unreadable preferences for %s, resetting to defaults: %s", recipient_id, exc)

            prefs = default_preferences(recipient_id)
            state.save(prefs.to_dict())
            logger.info("Created default notification preferences for %s", recipient_id)
            return prefs

    def set_preferences(self, preferences: NotificationPreferences) -> NotificationPreferences:
        """Replace a recipient's preferences wholesale."""
        with self._lock:
            self._state(preferences.recipient_id).save(preferences.to_dict())
        logger.info("Notification preferences saved for %s", preferences.recipient_id)
        return preferences

    def update_preferences(self, recipient_id: str, **changes) -> NotificationPreferences:
        """Read-modify-replace convenience for a subset of fields."""
        with self._lock:
            prefs = replace(self.get_preferences(recipient_id), **changes)
            return self.set_preferences(prefs)

    def set_type_enabled(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        enabled: bool,
    ) -> NotificationPreferences:
        with self._lock:
            prefs = self.get_preferences(recipient_id)
            prefs.types.set_enabled(notification_type, enabled)
            return self.set_preferences(prefs)

    def set_quiet_hours(self, recipient_id: str, start: str, end: str) -> NotificationPreferences:
        return self.update_preferences(recipient_id, quiet_hours=QuietHours(enabled=True, start=start, end=end))

    def disable_quiet_hours(self, recipient_id: str) -> NotificationPreferences:
        with self._lock:
            current = self.get_preferences(recipient_id).quiet_hours
            return self.update_preferences(recipient_id, quiet_hours=replace(current, enabled=False))

    def set_digest_mode(
        self,
        recipient_id: str,
        enabled: bool = True,
        frequency: DigestFrequency = DigestFrequency.DAILY,
        time: str = "08:00",
        weekday: int = 0,
    ) -> NotificationPreferences:
        digest = DigestMode(enabled=enabled, frequency=frequency, time=time, weekday=weekday)
        return self.update_preferences(recipient_id, digest_mode=digest)

    def reset_to_defaults(self, recipient_id: str) -> NotificationPreferences:
        return self.set_preferences(default_preferences(recipient_id))

    def is_type_enabled(self, recipient_id: str, notification_type: NotificationType) -> bool:
        """True only with the master switch on, an address, and the type flag on."""
        return self.get_preferences(recipient_id).is_deliverable(notification_type)

    def is_quiet_hours(self, recipient_id: str, now: datetime) -> bool:
        prefs = self.get_preferences(recipient_id)
        return prefs.quiet_hours.contains(prefs.local_time(now))

    def should_digest(self, recipient_id: str) -> bool:
        return self.get_preferences(recipient_id).digest_mode.enabled

    def evaluate(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        now: datetime,
    ) -> Verdict:
        """Decide the disposition of a notification.

        Quiet hours drop the notification rather than delaying it.
        """
        prefs = self.get_preferences(recipient_id)

        if not prefs.is_deliverable(notification_type):
            return Verdict.suppress("type-disabled")

        if prefs.quiet_hours.contains(prefs.local_time(now)):
            return Verdict.suppress("quiet-hours")

        if prefs.digest_mode.enabled:
            return Verdict.defer()

        return Verdict.send()

    def export_preferences(self, recipient_id: str) -> dict:
        return self.get_preferences(recipient_id).to_dict()

    def import_preferences(self, data: dict) -> Optional[NotificationPreferences]:
        """Replace preferences from an exported dict; None if it is malformed."""
        try:
            prefs = NotificationPreferences.from_dict(data)
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Rejected preference import: %s", exc)
            return None
        return self.set_preferences(prefs)
