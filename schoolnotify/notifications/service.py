"""Wiring for the notification pipeline."""

import logging
import threading
from typing import Optional

from schoolnotify.db.engine import create_state_engine
from schoolnotify.db.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from schoolnotify.notifications.config import NotificationConfig
from schoolnotify.notifications.digest import DigestAggregator
from schoolnotify.notifications.dispatcher import NotificationDispatcher
from schoolnotify.notifications.preferences import NotificationPolicyEngine
from schoolnotify.notifications.processor import QueueProcessor
from schoolnotify.notifications.queue import DeliveryQueueStore
from schoolnotify.notifications.scheduler import NotificationScheduler
from schoolnotify.notifications.sender import Clock, LogSender, Sender, SystemClock
from schoolnotify.notifications.templates import InMemoryTemplateRenderer, TemplateRenderer
from schoolnotify.notifications.tracker import DeliveryTracker
from schoolnotify.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Builds and holds every pipeline component over one store."""

    def __init__(
        self,
        store: KeyValueStore,
        sender: Sender,
        renderer: Optional[TemplateRenderer] = None,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.sender = sender
        self.renderer = renderer or InMemoryTemplateRenderer()
        self.config = config or NotificationConfig()
        self.clock = clock or SystemClock()

        self.policy = NotificationPolicyEngine(store)
        self.queue = DeliveryQueueStore(store, self.config, self.clock)
        self.tracker = DeliveryTracker(store, self.config, self.clock)
        self.digest = DigestAggregator(store, self.policy, sender, self.tracker, self.config, self.clock)
        self.dispatcher = NotificationDispatcher(
            self.policy, self.queue, self.digest, self.tracker,
            sender, self.renderer, self.config, self.clock,
        )
        self.processor = QueueProcessor(self.queue, sender, self.tracker, self.config, self.clock)
        self.scheduler = NotificationScheduler(self.processor, self.digest, self.config, self.clock)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        sender: Optional[Sender] = None,
        renderer: Optional[TemplateRenderer] = None,
        clock: Optional[Clock] = None,
    ) -> "NotificationService":
        """Build the service from settings, defaulting to the dry-run sender."""
        settings = settings or get_settings()
        if settings.use_database:
            store: KeyValueStore = SqlKeyValueStore(create_state_engine(settings.database_url))
            logger.info("Using database state store at %s", settings.database_url)
        else:
            store = InMemoryKeyValueStore()
            logger.info("Using in-memory state store")

        return cls(
            store=store,
            sender=sender or LogSender(),
            renderer=renderer,
            config=NotificationConfig.from_settings(settings),
            clock=clock,
        )

    def start(self) -> None:
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        return self.scheduler.stop(timeout)

    def get_status(self) -> dict:
        """Snapshot for operators: queue counts, digest backlog, scheduler state."""
        return {
            "running": self.scheduler.is_running,
            "queue": self.queue.get_stats(),
            "digest_pending": self.digest.pending_counts(),
            "history_size": self.tracker.size(),
        }


_service: Optional[NotificationService] = None
_service_lock = threading.Lock()


def get_notification_service() -> NotificationService:
    """Get or create the process-wide service built from settings."""
    global _service
    with _service_lock:
        if _service is None:
            _service = NotificationService.from_settings()
        return _service


def reset_notification_service() -> None:
    """Stop and drop the process-wide service."""
    global _service
    with _service_lock:
        if _service is not None:
            _service.stop()
        _service = None
