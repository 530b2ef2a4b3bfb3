"""Configuration for the notification delivery pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from schoolnotify.settings import Settings


class NotificationType(Enum):
    """Notification types raised by the school application."""
    ANNOUNCEMENT = "announcement"
    GRADE = "grade"
    PPDB = "ppdb"
    EVENT = "event"
    LIBRARY = "library"
    SYSTEM = "system"
    OCR = "ocr"
    OCR_VALIDATION = "ocr_validation"
    MISSING_GRADES = "missing_grades"


class NotificationPriority(Enum):
    """Notification priority levels."""
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class QueueStatus(Enum):
    """Lifecycle of a queued delivery attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class DeliveryStatus(Enum):
    """Observed delivery outcomes."""
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"
    OPENED = "opened"
    CLICKED = "clicked"


class DigestFrequency(Enum):
    """Digest flush cadence."""
    DAILY = "daily"
    WEEKLY = "weekly"


class Disposition(Enum):
    """Policy verdict for a single notification."""
    SEND = "send"
    SUPPRESS = "suppress"
    DEFER = "defer"


# Storage keys
QUEUE_KEY = "notification_queue"
DIGEST_KEY = "notification_digest_queue"
HISTORY_KEY = "notification_delivery_history"
PREFERENCES_KEY_PREFIX = "notification_prefs:"


@dataclass
class NotificationConfig:
    """Notification pipeline configuration."""

    # Retry policy
    max_attempts: int = 3
    retry_delays_seconds: tuple[int, ...] = (60, 300, 900)
    processing_timeout_seconds: Optional[int] = 900

    # Scheduling
    queue_tick_seconds: float = 60.0
    digest_tick_seconds: float = 300.0
    digest_window_minutes: int = 10

    # Analytics
    history_max: int = 1000
    analytics_days: int = 30

    # Content
    school_name: str = "MA Malnu Kananga"

    @classmethod
    def from_settings(cls, settings: "Settings") -> "NotificationConfig":
        timeout = settings.processing_timeout_minutes * 60
        return cls(
            max_attempts=settings.max_attempts,
            retry_delays_seconds=tuple(m * 60 for m in settings.retry_delays_minutes),
            processing_timeout_seconds=timeout if timeout > 0 else None,
            queue_tick_seconds=settings.queue_tick_seconds,
            digest_tick_seconds=settings.digest_tick_seconds,
            digest_window_minutes=settings.digest_window_minutes,
            history_max=settings.history_max,
            analytics_days=settings.analytics_days,
            school_name=settings.school_name,
        )

    def __post_init__(self):
        # Every digest window must contain at least one tick.
        if self.digest_window_minutes * 60 <= self.digest_tick_seconds:
            raise ValueError(
                f"digest_window_minutes ({self.digest_window_minutes}) must exceed "
                f"digest_tick_seconds ({self.digest_tick_seconds}s)"
            )


DEFAULT_NOTIFICATION_CONFIG = NotificationConfig()


# Type-specific configurations
TYPE_CONFIGS: dict[NotificationType, dict] = {
    NotificationType.ANNOUNCEMENT: {
        "template_id": "announcement-notification",
        "label": "Pengumuman",
        "default_enabled": True,
    },
    NotificationType.GRADE: {
        "template_id": "grade-update-notification",
        "label": "Nilai",
        "default_enabled": True,
    },
    NotificationType.PPDB: {
        "template_id": "ppdb-notification",
        "label": "PPDB",
        "default_enabled": False,
    },
    NotificationType.EVENT: {
        "template_id": "event-reminder",
        "label": "Acara",
        "default_enabled": True,
    },
    NotificationType.LIBRARY: {
        "template_id": "library-notification",
        "label": "Materi",
        "default_enabled": False,
    },
    NotificationType.SYSTEM: {
        "template_id": "system-notification",
        "label": "Sistem",
        "default_enabled": True,
    },
    NotificationType.OCR: {
        "template_id": "system-notification",
        "label": "OCR",
        "default_enabled": False,
    },
    NotificationType.OCR_VALIDATION: {
        "template_id": "system-notification",
        "label": "Validasi OCR",
        "default_enabled": False,
    },
    NotificationType.MISSING_GRADES: {
        "template_id": "missing-grades-notification",
        "label": "Nilai Belum Ada",
        "default_enabled": True,
    },
}


def template_for(notification_type: NotificationType) -> str:
    return TYPE_CONFIGS[notification_type]["template_id"]


def label_for(notification_type: NotificationType) -> str:
    return TYPE_CONFIGS.get(notification_type, {}).get("label", notification_type.value)
