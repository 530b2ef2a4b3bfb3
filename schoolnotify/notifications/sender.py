"""Sender and clock capabilities consumed by the pipeline."""

from datetime import datetime, timezone
import logging
import time
from typing import Protocol, runtime_checkable
import uuid

from schoolnotify.notifications.errors import is_transient
from schoolnotify.notifications.models import RenderedMessage, SendResult

logger = logging.getLogger(__name__)


@runtime_checkable
class Sender(Protocol):
    """Transport capability that delivers a rendered message.

    Implementations own their own transport timeout. Retries may resend,
    so providers must tolerate duplicates.

    A failed SendResult is retried unless ``permanent`` is set, so
    implementations must mark rejections that cannot succeed later
    (invalid or unknown mailbox, content refused) as permanent. Raised
    exceptions are classified by ``is_transient``.
    """

    def send(self, message: RenderedMessage) -> SendResult:
        ...


@runtime_checkable
class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class LogSender:
    """Dry-run sender that logs instead of transmitting.

    In production this is replaced by an SMTP or provider API adapter.
    """

    def __init__(self):
        self.sent_count = 0

    def send(self, message: RenderedMessage) -> SendResult:
        message_id = f"msg_{uuid.uuid4().hex[:12]}"
        self.sent_count += 1
        logger.info("Dry-run delivery %s to %s: %s", message_id, message.to, message.subject)
        return SendResult(success=True, message_id=message_id)


def deliver(sender: Sender, message: RenderedMessage) -> SendResult:
    """Invoke a sender, folding raised errors into a SendResult.

    Network-class exceptions and TransientDeliveryError come back as
    retryable failures; anything else the sender raises is permanent.
    """
    start_time = time.time()
    try:
        result = sender.send(message)
    except Exception as e:
        latency_ms = int((time.time() - start_time) * 1000)
        logger.warning(
            "Sender raised %s after %dms delivering to %s: %s",
            type(e).__name__, latency_ms, message.to, e,
        )
        return SendResult(
            success=False,
            error=str(e) or type(e).__name__,
            permanent=not is_transient(e),
        )

    if result.success:
        logger.debug("Delivered to %s in %dms", message.to, int((time.time() - start_time) * 1000))
    return result
