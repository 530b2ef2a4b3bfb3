"""Input validation for delivery requests."""

from datetime import datetime
import re

from schoolnotify.notifications.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_address(address: str) -> str:
    """Validate a recipient email address.

    Returns:
        The stripped address.

    Raises:
        ValidationError: If the address is empty or malformed.
    """
    if not address or not isinstance(address, str):
        raise ValidationError("Recipient address is required", field="address")

    address = address.strip()
    if not EMAIL_PATTERN.match(address):
        raise ValidationError(f"Invalid email address: {address}", field="address")
    return address


def validate_schedule(scheduled_for: datetime, now: datetime) -> datetime:
    """Require a timezone-aware send time in the future."""
    if scheduled_for.tzinfo is None:
        raise ValidationError("Scheduled time must be timezone-aware", field="scheduled_for")
    if scheduled_for <= now:
        raise ValidationError("Scheduled time must be in the future", field="scheduled_for")
    return scheduled_for
