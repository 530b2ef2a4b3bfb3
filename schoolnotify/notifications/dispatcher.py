"""Notification dispatch: policy, render, send, and fallback to the queue."""

from datetime import datetime
import logging
from typing import Any, Optional

from schoolnotify.logging_config.context import DeliveryContext
from schoolnotify.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    DeliveryStatus,
    Disposition,
    NotificationConfig,
    NotificationType,
    template_for,
)
from schoolnotify.notifications.digest import DigestAggregator
from schoolnotify.notifications.errors import ValidationError
from schoolnotify.notifications.models import (
    DeliveryRecord,
    DigestItem,
    DispatchResult,
    Notification,
    Recipient,
    RenderedMessage,
    require_aware,
)
from schoolnotify.notifications.preferences import NotificationPolicyEngine
from schoolnotify.notifications.queue import DeliveryQueueStore
from schoolnotify.notifications.sender import Clock, Sender, SystemClock, deliver
from schoolnotify.notifications.templates import TemplateRenderer
from schoolnotify.notifications.tracker import DeliveryTracker
from schoolnotify.notifications.validators import validate_address, validate_schedule

logger = logging.getLogger(__name__)


def build_payload(notification: Notification, recipient_id: str, message: RenderedMessage) -> dict:
    """Queue payload carrying the rendered message and what the tracker needs."""
    return {
        "message": message.to_dict(),
        "notification_id": notification.notification_id,
        "notification_type": notification.type.value,
        "recipient_id": recipient_id,
    }


class NotificationDispatcher:
    """Routes a notification to immediate send, the queue, or a digest."""

    def __init__(
        self,
        policy: NotificationPolicyEngine,
        queue: DeliveryQueueStore,
        digest: DigestAggregator,
        tracker: DeliveryTracker,
        sender: Sender,
        renderer: TemplateRenderer,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.policy = policy
        self.queue = queue
        self.digest = digest
        self.tracker = tracker
        self.sender = sender
        self.renderer = renderer
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()

    def build_context(self, notification: Notification, recipient: Recipient) -> dict[str, Any]:
        return {
            **notification.data,
            "recipientName": recipient.display_name,
            "schoolName": self.config.school_name,
            "title": notification.title,
            "body": notification.body,
        }

    def dispatch(
        self,
        notification: Notification,
        recipient: Recipient,
        now: Optional[datetime] = None,
        queue_on_failure: bool = True,
        scheduled_for: Optional[datetime] = None,
    ) -> DispatchResult:
        """Deliver one notification to one recipient according to their policy.

        Args:
            notification: The event to deliver.
            recipient: Target; an empty address falls back to the stored contact address.
            now: Evaluation instant, defaults to the injected clock.
            queue_on_failure: Enqueue for retry when the Sender fails transiently.
            scheduled_for: Enqueue for a later send instead of sending now.

        Returns:
            DispatchResult whose ``reason`` is one of sent, scheduled,
            queued-for-digest, queued-after-transient-failure, or a failure
            reason (type-disabled, quiet-hours, validation-failed,
            template-not-found, delivery-failed).
        """
        now = require_aware(now or self.clock.now())
        recipient_id = recipient.recipient_id

        with DeliveryContext(recipient_id=recipient_id, notification_id=notification.notification_id):
            verdict = self.policy.evaluate(recipient_id, notification.type, now)

            if verdict.disposition == Disposition.SUPPRESS:
                logger.info("Notification %s suppressed: %s", notification.notification_id, verdict.reason)
                return DispatchResult(success=False, reason=verdict.reason or "suppressed")

            if verdict.disposition == Disposition.DEFER:
                self.digest.capture(recipient_id, DigestItem(
                    notification=notification,
                    recipient_id=recipient_id,
                    template_id=template_for(notification.type),
                    render_context=self.build_context(notification, recipient),
                    captured_at=now,
                ))
                return DispatchResult(success=True, reason="queued-for-digest")

            address = recipient.address or self.policy.get_preferences(recipient_id).contact_address
            return self._send(notification, recipient, address, now, queue_on_failure, scheduled_for)

    def send_test(
        self,
        recipient_id: str,
        address: str,
        name: str = "User",
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """Send a system test message, bypassing the recipient's policy."""
        now = require_aware(now or self.clock.now())
        notification = Notification(
            type=NotificationType.SYSTEM,
            title="Email Test",
            body="Ini adalah email uji coba dari sistem notifikasi.",
            created_at=now,
        )
        recipient = Recipient(recipient_id=recipient_id, address=address, name=name)
        with DeliveryContext(recipient_id=recipient_id, notification_id=notification.notification_id):
            return self._send(notification, recipient, address, now, queue_on_failure=False)

    def _send(
        self,
        notification: Notification,
        recipient: Recipient,
        address: str,
        now: datetime,
        queue_on_failure: bool,
        scheduled_for: Optional[datetime] = None,
    ) -> DispatchResult:
        try:
            address = validate_address(address)
            if scheduled_for is not None:
                validate_schedule(scheduled_for, now)
        except ValidationError as e:
            logger.warning("Rejected notification %s: %s", notification.notification_id, e.message)
            return DispatchResult(success=False, reason=e.reason, error=e.message)

        template_id = template_for(notification.type)
        content = self.renderer.render(template_id, self.build_context(notification, recipient))
        if content is None:
            logger.error("Template not found: %s", template_id)
            return DispatchResult(
                success=False,
                reason="template-not-found",
                error=f"Template not found: {template_id}",
            )

        message = RenderedMessage(to=address, subject=content.subject, html=content.html, text=content.text)
        payload = build_payload(notification, recipient.recipient_id, message)

        if scheduled_for is not None:
            item = self.queue.enqueue(payload, scheduled_for=scheduled_for)
            self._record(notification, recipient.recipient_id, address, DeliveryStatus.QUEUED, now)
            return DispatchResult(success=True, reason="scheduled", queue_item_id=item.id)

        result = deliver(self.sender, message)

        if result.success:
            self._record(
                notification, recipient.recipient_id, address, DeliveryStatus.SENT, now,
                message_id=result.message_id or "",
            )
            logger.info("Notification %s sent to %s", notification.notification_id, address)
            return DispatchResult(success=True, reason="sent", message_id=result.message_id)

        if not result.permanent and queue_on_failure:
            item = self.queue.enqueue(payload)
            self._record(
                notification, recipient.recipient_id, address, DeliveryStatus.QUEUED, now,
                error=result.error,
            )
            logger.warning(
                "Delivery of %s failed transiently, queued as %s: %s",
                notification.notification_id, item.id, result.error,
            )
            return DispatchResult(
                success=True,
                reason="queued-after-transient-failure",
                queue_item_id=item.id,
                error=result.error,
            )

        self._record(
            notification, recipient.recipient_id, address, DeliveryStatus.FAILED, now,
            error=result.error,
        )
        logger.error("Delivery of %s failed: %s", notification.notification_id, result.error)
        return DispatchResult(success=False, reason="delivery-failed", error=result.error)

    def _record(
        self,
        notification: Notification,
        recipient_id: str,
        address: str,
        status: DeliveryStatus,
        now: datetime,
        message_id: str = "",
        error: Optional[str] = None,
    ) -> None:
        self.tracker.record(DeliveryRecord(
            notification_id=notification.notification_id,
            notification_type=notification.type,
            recipient_id=recipient_id,
            address=address,
            status=status,
            message_id=message_id,
            timestamp=now,
            error=error,
        ))
