"""Notification Exception Hierarchy.

Typed exceptions for the delivery pipeline. Delivery errors carry a
``retryable`` flag so the queue can tell a provider hiccup from a
rejected message without inspecting error strings.
"""

from typing import Optional


class NotificationError(Exception):
    """Base exception for all notification pipeline errors."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or "notification-error"


class ValidationError(NotificationError):
    """Raised when a recipient address or request is malformed.

    Never retried.
    """

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None):
        super().__init__(message, reason="validation-failed")
        self.field = field


class TemplateNotFoundError(NotificationError):
    """Raised when the renderer has no template for the given id."""

    def __init__(self, template_id: str):
        super().__init__(f"Template not found: {template_id}", reason="template-not-found")
        self.template_id = template_id


class DeliveryError(NotificationError):
    """Base class for failures reported by a Sender."""

    retryable = True

    def __init__(self, message: str, reason: str = "delivery-failed"):
        super().__init__(message, reason=reason)


class TransientDeliveryError(DeliveryError):
    """Network or provider hiccup; retried per the backoff table."""

    retryable = True

    def __init__(self, message: str = "Transient delivery failure"):
        super().__init__(message, reason="transient-failure")


class PermanentDeliveryError(DeliveryError):
    """Provider rejected the message; no further retries."""

    retryable = False

    def __init__(self, message: str = "Message rejected by provider"):
        super().__init__(message, reason="permanent-failure")


class StorageCorruptionError(NotificationError):
    """Backing blob could not be decoded.

    Raised by the blob decoder only; components catch it, log it and
    continue with empty state.
    """

    def __init__(self, key: str, detail: str = ""):
        super().__init__(f"Corrupt state for key {key!r}: {detail}", reason="storage-corruption")
        self.key = key


NETWORK_ERRORS = (ConnectionError, TimeoutError, OSError)


def is_transient(exc: BaseException) -> bool:
    """Classify a Sender exception as retryable."""
    if isinstance(exc, DeliveryError):
        return exc.retryable
    return isinstance(exc, NETWORK_ERRORS)
