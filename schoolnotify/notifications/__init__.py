"""School notification delivery pipeline.

Asynchronous delivery of school notifications supporting:
- Per-recipient preferences, quiet hours and digest mode
- Durable delivery queue with bounded retry
- Scheduled digest batching
- Delivery history and analytics
"""

from schoolnotify.notifications.config import (
    DeliveryStatus,
    DigestFrequency,
    Disposition,
    NotificationPriority,
    NotificationType,
    QueueStatus,
    NotificationConfig,
    DEFAULT_NOTIFICATION_CONFIG,
    TYPE_CONFIGS,
)
from schoolnotify.notifications.errors import (
    NotificationError,
    ValidationError,
    TemplateNotFoundError,
    DeliveryError,
    TransientDeliveryError,
    PermanentDeliveryError,
    StorageCorruptionError,
)
from schoolnotify.notifications.models import (
    Notification,
    Recipient,
    TypePreferences,
    QuietHours,
    DigestMode,
    NotificationPreferences,
    Verdict,
    RenderedMessage,
    SendResult,
    QueueItem,
    DigestItem,
    DeliveryRecord,
    DispatchResult,
    DeliveryAnalytics,
)
from schoolnotify.notifications.sender import Clock, LogSender, Sender, SystemClock
from schoolnotify.notifications.templates import InMemoryTemplateRenderer, TemplateRenderer
from schoolnotify.notifications.queue import DeliveryQueueStore
from schoolnotify.notifications.preferences import NotificationPolicyEngine
from schoolnotify.notifications.digest import DigestAggregator
from schoolnotify.notifications.tracker import DeliveryTracker
from schoolnotify.notifications.dispatcher import NotificationDispatcher
from schoolnotify.notifications.processor import ProcessResult, QueueProcessor
from schoolnotify.notifications.scheduler import IntervalTimer, NotificationScheduler
from schoolnotify.notifications.service import NotificationService, get_notification_service

__all__ = [
    # Config
    "DeliveryStatus",
    "DigestFrequency",
    "Disposition",
    "NotificationPriority",
    "NotificationType",
    "QueueStatus",
    "NotificationConfig",
    "DEFAULT_NOTIFICATION_CONFIG",
    "TYPE_CONFIGS",
    # Errors
    "NotificationError",
    "ValidationError",
    "TemplateNotFoundError",
    "DeliveryError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    "StorageCorruptionError",
    # Models
    "Notification",
    "Recipient",
    "TypePreferences",
    "QuietHours",
    "DigestMode",
    "NotificationPreferences",
    "Verdict",
    "RenderedMessage",
    "SendResult",
    "QueueItem",
    "DigestItem",
    "DeliveryRecord",
    "DispatchResult",
    "DeliveryAnalytics",
    # Capabilities
    "Clock",
    "LogSender",
    "Sender",
    "SystemClock",
    "InMemoryTemplateRenderer",
    "TemplateRenderer",
    # Components
    "DeliveryQueueStore",
    "NotificationPolicyEngine",
    "DigestAggregator",
    "DeliveryTracker",
    "NotificationDispatcher",
    "ProcessResult",
    "QueueProcessor",
    "IntervalTimer",
    "NotificationScheduler",
    "NotificationService",
    "get_notification_service",
]
