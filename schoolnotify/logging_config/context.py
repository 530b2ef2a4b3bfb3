"""Delivery Context Management.

Thread-safe delivery context using contextvars for binding recipient,
notification, and queue item IDs to log entries.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_recipient_id_var: ContextVar[str] = ContextVar("recipient_id", default="")
_notification_id_var: ContextVar[str] = ContextVar("notification_id", default="")
_queue_item_id_var: ContextVar[str] = ContextVar("queue_item_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def get_recipient_id() -> str:
    """Get the current recipient ID from context."""
    return _recipient_id_var.get()


def get_notification_id() -> str:
    return _notification_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    recipient_id = _recipient_id_var.get()
    if recipient_id:
        ctx["recipient_id"] = recipient_id
    notification_id = _notification_id_var.get()
    if notification_id:
        ctx["notification_id"] = notification_id
    queue_item_id = _queue_item_id_var.get()
    if queue_item_id:
        ctx["queue_item_id"] = queue_item_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class DeliveryContext:
    """Context manager binding delivery identifiers to log entries.

    Nested contexts inherit unset fields from the enclosing one and
    restore it on exit.

    Example:
        with DeliveryContext(recipient_id="student_1", notification_id="n-42"):
            logger.info("dispatching")  # includes recipient_id, notification_id
    """

    recipient_id: str = ""
    notification_id: str = ""
    queue_item_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "DeliveryContext":
        self._tokens = [
            (_recipient_id_var, _recipient_id_var.set(self.recipient_id or _recipient_id_var.get())),
            (_notification_id_var, _notification_id_var.set(self.notification_id or _notification_id_var.get())),
            (_queue_item_id_var, _queue_item_id_var.set(self.queue_item_id or _queue_item_id_var.get())),
            (_extra_context_var, _extra_context_var.set({**_extra_context_var.get(), **self.extra})),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
