"""Tests for notification dispatch through the wired service."""

import pytest
from datetime import datetime, timedelta, timezone

from conftest import ScriptedSender
from schoolnotify.notifications.config import DeliveryStatus, NotificationType, QueueStatus
from schoolnotify.notifications.errors import PermanentDeliveryError
from schoolnotify.notifications.models import Notification, Recipient, SendResult
from schoolnotify.notifications.service import NotificationService
from schoolnotify.notifications.templates import InMemoryTemplateRenderer


def grade_notification(**kwargs) -> Notification:
    return Notification(type=NotificationType.GRADE, title="UTS Matematika", body="Nilai: 90", **kwargs)


def build_service(store, sender, clock, **kwargs) -> NotificationService:
    service = NotificationService(store, sender, clock=clock, **kwargs)
    service.policy.update_preferences("student_1", enabled=True, contact_address="parent@example.com")
    return service


RECIPIENT = Recipient(recipient_id="student_1", name="Budi")


class TestDispatchPolicy:
    """Suppression and digest routing."""

    def test_suppressed_when_type_disabled(self, store, sender, clock):
        service = NotificationService(store, sender, clock=clock)
        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)

        assert not result.success
        assert result.reason == "type-disabled"
        assert sender.sent == []
        assert service.tracker.size() == 0
        assert service.queue.size() == 0

    def test_suppressed_during_quiet_hours(self, store, sender, clock):
        service = build_service(store, sender, clock)
        service.policy.set_quiet_hours("student_1", "22:00", "06:00")

        result = service.dispatcher.dispatch(
            grade_notification(), RECIPIENT, now=datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc),
        )
        assert result.reason == "quiet-hours"
        assert sender.sent == []

    def test_deferred_to_digest(self, store, sender, clock):
        service = build_service(store, sender, clock)
        service.policy.set_digest_mode("student_1", enabled=True)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)

        assert result.success
        assert result.reason == "queued-for-digest"
        assert sender.sent == []
        pending = service.digest.pending("student_1")
        assert len(pending) == 1
        assert pending[0].template_id == "grade-update-notification"
        assert pending[0].render_context["recipientName"] == "Budi"


class TestDispatchSend:
    """Immediate send path."""

    def test_sent(self, store, sender, clock):
        service = build_service(store, sender, clock)
        notification = grade_notification()

        result = service.dispatcher.dispatch(notification, RECIPIENT)

        assert result.success
        assert result.reason == "sent"
        assert result.message_id == "msg-1"
        assert sender.sent[0].to == "parent@example.com"
        assert sender.sent[0].subject == "Pembaruan Nilai: UTS Matematika"
        assert "Budi" in sender.sent[0].text

        record = service.tracker.history()[0]
        assert record.status == DeliveryStatus.SENT
        assert record.notification_id == notification.notification_id
        assert record.message_id == "msg-1"

    def test_recipient_address_overrides_contact(self, store, sender, clock):
        service = build_service(store, sender, clock)
        service.dispatcher.dispatch(grade_notification(), Recipient("student_1", "guardian@example.com"))
        assert sender.sent[0].to == "guardian@example.com"

    def test_invalid_address(self, store, sender, clock):
        service = build_service(store, sender, clock)
        service.policy.update_preferences("student_1", contact_address="not-an-email")

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)
        assert not result.success
        assert result.reason == "validation-failed"
        assert sender.sent == []
        assert service.queue.size() == 0

    def test_template_not_found(self, store, sender, clock):
        service = build_service(store, sender, clock, renderer=InMemoryTemplateRenderer(templates={}))

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)
        assert not result.success
        assert result.reason == "template-not-found"
        assert sender.sent == []
        assert service.queue.size() == 0

    def test_notification_data_reaches_template(self, store, sender, clock):
        renderer = InMemoryTemplateRenderer()
        renderer.register("grade-update-notification", subject="{{subject}} untuk {{recipientName}}")
        service = build_service(store, sender, clock, renderer=renderer)

        service.dispatcher.dispatch(grade_notification(data={"subject": "Matematika"}), RECIPIENT)
        assert sender.sent[0].subject == "Matematika untuk Budi"


class TestDispatchFailures:
    """Transient and permanent Sender failures."""

    def test_transient_exception_queued(self, store, clock):
        sender = ScriptedSender([ConnectionError("connection reset")])
        service = build_service(store, sender, clock)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)

        assert result.success
        assert result.reason == "queued-after-transient-failure"
        item = service.queue.get(result.queue_item_id)
        assert item.status == QueueStatus.PENDING
        assert item.message.to == "parent@example.com"
        assert service.tracker.history()[0].status == DeliveryStatus.QUEUED

        drained = service.processor.drain()
        assert drained.sent == 1
        assert service.queue.size() == 0
        assert service.tracker.history()[0].status == DeliveryStatus.SENT

    def test_non_permanent_result_queued(self, store, clock):
        sender = ScriptedSender([SendResult(success=False, error="rate limited")])
        service = build_service(store, sender, clock)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)
        assert result.reason == "queued-after-transient-failure"
        assert result.error == "rate limited"

    def test_transient_without_opt_in_fails(self, store, clock):
        sender = ScriptedSender([TimeoutError("timed out")])
        service = build_service(store, sender, clock)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT, queue_on_failure=False)
        assert not result.success
        assert result.reason == "delivery-failed"
        assert service.queue.size() == 0
        assert service.tracker.history()[0].status == DeliveryStatus.FAILED

    def test_permanent_failure_not_queued(self, store, clock):
        sender = ScriptedSender([PermanentDeliveryError("mailbox does not exist")])
        service = build_service(store, sender, clock)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)
        assert not result.success
        assert result.reason == "delivery-failed"
        assert result.error == "mailbox does not exist"
        assert service.queue.size() == 0
        assert service.tracker.history()[0].status == DeliveryStatus.FAILED

    def test_flagged_permanent_result_not_queued(self, store, clock):
        sender = ScriptedSender([SendResult(success=False, error="invalid recipient", permanent=True)])
        service = build_service(store, sender, clock)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT)
        assert not result.success
        assert result.reason == "delivery-failed"
        assert result.error == "invalid recipient"
        assert service.queue.size() == 0

    def test_naive_now_rejected(self, store, sender, clock):
        service = build_service(store, sender, clock)
        with pytest.raises(ValueError):
            service.dispatcher.dispatch(grade_notification(), RECIPIENT, now=datetime(2024, 1, 15, 9, 0))
        assert sender.sent == []


class TestScheduledDispatch:
    """Future sends go through the queue."""

    def test_scheduled(self, store, sender, clock):
        service = build_service(store, sender, clock)
        send_at = clock.now() + timedelta(hours=1)

        result = service.dispatcher.dispatch(grade_notification(), RECIPIENT, scheduled_for=send_at)

        assert result.success
        assert result.reason == "scheduled"
        assert sender.sent == []
        assert service.queue.get(result.queue_item_id).next_attempt_at == send_at

        assert service.processor.drain().processed == 0
        clock.advance(hours=1)
        assert service.processor.drain().sent == 1
        assert len(sender.sent) == 1

    def test_past_schedule_rejected(self, store, sender, clock):
        service = build_service(store, sender, clock)
        result = service.dispatcher.dispatch(
            grade_notification(), RECIPIENT, scheduled_for=clock.now() - timedelta(minutes=1),
        )
        assert not result.success
        assert result.reason == "validation-failed"
        assert service.queue.size() == 0


class TestSendTest:
    """Test messages bypass recipient policy."""

    def test_send_test(self, store, sender, clock):
        service = NotificationService(store, sender, clock=clock)
        result = service.dispatcher.send_test("admin", "admin@example.com", name="Admin")

        assert result.success
        assert sender.sent[0].to == "admin@example.com"
        assert service.tracker.history()[0].notification_type == NotificationType.SYSTEM

    def test_send_test_invalid_address(self, store, sender, clock):
        service = NotificationService(store, sender, clock=clock)
        assert service.dispatcher.send_test("admin", "nope").reason == "validation-failed"


class TestServiceStatus:
    def test_get_status(self, store, sender, clock):
        service = build_service(store, sender, clock)
        service.policy.set_digest_mode("student_1", enabled=True)
        service.dispatcher.dispatch(grade_notification(), RECIPIENT)

        status = service.get_status()
        assert status["running"] is False
        assert status["queue"]["total"] == 0
        assert status["digest_pending"] == {"student_1": 1}
