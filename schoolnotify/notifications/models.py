"""Data models for the notification delivery pipeline."""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import uuid

from schoolnotify.notifications.config import (
    DeliveryStatus,
    DigestFrequency,
    Disposition,
    NotificationPriority,
    NotificationType,
    QueueStatus,
)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require_aware(value: datetime, name: str = "now") -> datetime:
    """Reject naive datetimes; stored instants are always UTC-aware."""
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value


def _minutes(hhmm: str) -> int:
    hour, minute = map(int, hhmm.split(":"))
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid HH:MM value: {hhmm}")
    return hour * 60 + minute


@dataclass
class Notification:
    """A logical event that may trigger a delivery."""

    type: NotificationType
    title: str
    body: str
    notification_id: str = field(default_factory=_new_id)
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "priority": self.priority.value,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        return cls(
            notification_id=data["notification_id"],
            type=NotificationType(data["type"]),
            title=data.get("title", ""),
            body=data.get("body", ""),
            data=dict(data.get("data") or {}),
            priority=NotificationPriority(data.get("priority", "normal")),
            created_at=parse_timestamp(data.get("created_at")) or _now(),
        )


@dataclass
class Recipient:
    """Delivery target for a notification."""

    recipient_id: str
    address: str = ""
    name: str = ""

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.address.split("@")[0] if self.address else self.recipient_id


@dataclass
class TypePreferences:
    """Per-type switches, one field per NotificationType."""

    announcement: bool = True
    grade: bool = True
    ppdb: bool = False
    event: bool = True
    library: bool = False
    system: bool = True
    ocr: bool = False
    ocr_validation: bool = False
    missing_grades: bool = True

    def is_enabled(self, notification_type: NotificationType) -> bool:
        return getattr(self, notification_type.value)

    def set_enabled(self, notification_type: NotificationType, enabled: bool) -> None:
        setattr(self, notification_type.value, enabled)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "TypePreferences":
        known = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in data.items() if k in known})


@dataclass
class QuietHours:
    """Recipient-configured window during which delivery is suppressed."""

    enabled: bool = False
    start: str = "22:00"  # HH:MM
    end: str = "07:00"

    def contains(self, local_time: datetime) -> bool:
        """Check if a local time falls within the quiet window.

        Windows whose start is later than their end wrap across midnight.
        """
        if not self.enabled:
            return False

        try:
            start_minutes = _minutes(self.start)
            end_minutes = _minutes(self.end)
        except (ValueError, AttributeError):
            return False

        current_minutes = local_time.hour * 60 + local_time.minute

        if start_minutes <= end_minutes:
            return start_minutes <= current_minutes <= end_minutes
        # Overnight quiet hours (e.g., 22:00 - 06:00)
        return current_minutes >= start_minutes or current_minutes <= end_minutes

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> "QuietHours":
        default = cls()
        return cls(
            enabled=bool(data.get("enabled", default.enabled)),
            start=data.get("start", default.start),
            end=data.get("end", default.end),
        )


@dataclass
class DigestMode:
    """Batching settings for a recipient."""

    enabled: bool = False
    frequency: DigestFrequency = DigestFrequency.DAILY
    time: str = "08:00"  # HH:MM
    weekday: int = 0  # Monday, used by weekly digests

    @property
    def minute_of_day(self) -> int:
        return _minutes(self.time)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "time": self.time,
            "weekday": self.weekday,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DigestMode":
        default = cls()
        return cls(
            enabled=bool(data.get("enabled", default.enabled)),
            frequency=DigestFrequency(data.get("frequency", default.frequency.value)),
            time=data.get("time", default.time),
            weekday=int(data.get("weekday", default.weekday)),
        )


@dataclass
class NotificationPreferences:
    """Delivery preferences for one recipient."""

    recipient_id: str
    enabled: bool = False
    contact_address: str = ""
    types: TypePreferences = field(default_factory=TypePreferences)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    digest_mode: DigestMode = field(default_factory=DigestMode)
    timezone: str = "UTC"

    def is_deliverable(self, notification_type: NotificationType) -> bool:
        return bool(self.enabled and self.contact_address and self.types.is_enabled(notification_type))

    def local_time(self, now: datetime) -> datetime:
        """Convert an aware instant to the recipient's wall clock."""
        require_aware(now)
        try:
            return now.astimezone(ZoneInfo(self.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            return now

    def to_dict(self) -> dict:
        return {
            "recipient_id": self.recipient_id,
            "enabled": self.enabled,
            "contact_address": self.contact_address,
            "types": self.types.to_dict(),
            "quiet_hours": self.quiet_hours.to_dict(),
            "digest_mode": self.digest_mode.to_dict(),
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationPreferences":
        return cls(
            recipient_id=data["recipient_id"],
            enabled=bool(data.get("enabled", False)),
            contact_address=data.get("contact_address", ""),
            types=TypePreferences.from_dict(data.get("types") or {}),
            quiet_hours=QuietHours.from_dict(data.get("quiet_hours") or {}),
            digest_mode=DigestMode.from_dict(data.get("digest_mode") or {}),
            timezone=data.get("timezone", "UTC"),
        )


@dataclass
class Verdict:
    """Policy decision for one notification."""

    disposition: Disposition
    reason: Optional[str] = None

    @classmethod
    def send(cls) -> "Verdict":
        return cls(Disposition.SEND)

    @classmethod
    def suppress(cls, reason: str) -> "Verdict":
        return cls(Disposition.SUPPRESS, reason)

    @classmethod
    def defer(cls) -> "Verdict":
        return cls(Disposition.DEFER, "digest")


@dataclass
class RenderedMessage:
    """Content ready to hand to a Sender."""

    to: str
    subject: str
    html: str = ""
    text: str = ""

    def to_dict(self) -> dict:
        return {"to": self.to, "subject": self.subject, "html": self.html, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "RenderedMessage":
        return cls(
            to=data.get("to", ""),
            subject=data.get("subject", ""),
            html=data.get("html", ""),
            text=data.get("text", ""),
        )


@dataclass
class SendResult:
    """Outcome reported by a Sender.

    ``permanent`` defaults to False: an unflagged failure is treated as
    transient and retried.
    """

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False


@dataclass
class QueueItem:
    """A pending delivery attempt held by the queue store."""

    payload: dict
    id: str = field(default_factory=_new_id)
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: datetime = field(default_factory=_now)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def is_due(self, now: datetime) -> bool:
        return self.status == QueueStatus.PENDING and self.next_attempt_at <= now

    @property
    def message(self) -> RenderedMessage:
        return RenderedMessage.from_dict(self.payload.get("message") or {})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payload": self.payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_attempt_at": format_timestamp(self.last_attempt_at),
            "next_attempt_at": format_timestamp(self.next_attempt_at),
            "error": self.error,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        created_at = parse_timestamp(data.get("created_at")) or _now()
        return cls(
            id=data["id"],
            payload=dict(data.get("payload") or {}),
            status=QueueStatus(data.get("status", "pending")),
            attempts=int(data.get("attempts", 0)),
            last_attempt_at=parse_timestamp(data.get("last_attempt_at")),
            next_attempt_at=parse_timestamp(data.get("next_attempt_at")) or created_at,
            error=data.get("error"),
            created_at=created_at,
        )


@dataclass
class DigestItem:
    """A notification held back for a recipient's next digest."""

    notification: Notification
    recipient_id: str
    template_id: str
    render_context: dict[str, Any] = field(default_factory=dict)
    captured_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "notification": self.notification.to_dict(),
            "recipient_id": self.recipient_id,
            "template_id": self.template_id,
            "render_context": self.render_context,
            "captured_at": format_timestamp(self.captured_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DigestItem":
        return cls(
            notification=Notification.from_dict(data["notification"]),
            recipient_id=data["recipient_id"],
            template_id=data.get("template_id", ""),
            render_context=dict(data.get("render_context") or {}),
            captured_at=parse_timestamp(data.get("captured_at")) or _now(),
        )


@dataclass
class DeliveryRecord:
    """Immutable log entry describing one observed outcome."""

    notification_id: str
    notification_type: NotificationType
    recipient_id: str
    address: str
    status: DeliveryStatus
    message_id: str = ""
    timestamp: datetime = field(default_factory=_now)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "notification_type": self.notification_type.value,
            "recipient_id": self.recipient_id,
            "address": self.address,
            "message_id": self.message_id,
            "status": self.status.value,
            "timestamp": format_timestamp(self.timestamp),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryRecord":
        return cls(
            notification_id=data["notification_id"],
            notification_type=NotificationType(data["notification_type"]),
            recipient_id=data.get("recipient_id", ""),
            address=data.get("address", ""),
            status=DeliveryStatus(data["status"]),
            message_id=data.get("message_id", ""),
            timestamp=parse_timestamp(data.get("timestamp")) or _now(),
            error=data.get("error"),
        )


@dataclass
class DispatchResult:
    """Structured outcome of a dispatch call."""

    success: bool
    reason: str
    message_id: Optional[str] = None
    queue_item_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "reason": self.reason,
            "message_id": self.message_id,
            "queue_item_id": self.queue_item_id,
            "error": self.error,
        }


@dataclass
class DeliveryAnalytics:
    """Delivery statistics over a trailing window."""

    total_sent: int = 0
    total_delivered: int = 0
    total_failed: int = 0
    total_bounced: int = 0
    total_opened: int = 0
    total_clicked: int = 0
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    by_type: dict[str, int] = field(default_factory=dict)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    def calculate_rates(self) -> None:
        """Calculate percentage rates, zero where the denominator is zero."""
        self.delivery_rate = self.total_delivered / self.total_sent * 100 if self.total_sent > 0 else 0.0
        self.open_rate = self.total_opened / self.total_delivered * 100 if self.total_delivered > 0 else 0.0
        self.click_rate = self.total_clicked / self.total_opened * 100 if self.total_opened > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "total_sent": self.total_sent,
            "total_delivered": self.total_delivered,
            "total_failed": self.total_failed,
            "total_bounced": self.total_bounced,
            "total_opened": self.total_opened,
            "total_clicked": self.total_clicked,
            "delivery_rate": round(self.delivery_rate, 2),
            "open_rate": round(self.open_rate, 2),
            "click_rate": round(self.click_rate, 2),
            "by_type": self.by_type,
            "period_start": format_timestamp(self.period_start),
            "period_end": format_timestamp(self.period_end),
        }
