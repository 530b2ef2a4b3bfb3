"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from schoolnotify.db.store import InMemoryKeyValueStore  # noqa: E402
from schoolnotify.notifications.config import NotificationConfig  # noqa: E402
from schoolnotify.notifications.models import RenderedMessage, SendResult  # noqa: E402


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class RecordingSender:
    """Sender that succeeds and keeps every message."""

    def __init__(self):
        self.sent: list[RenderedMessage] = []

    def send(self, message: RenderedMessage) -> SendResult:
        self.sent.append(message)
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")


class ScriptedSender:
    """Sender that plays back a list of outcomes, then succeeds.

    Entries are SendResult instances or exceptions to raise.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls: list[RenderedMessage] = []

    def send(self, message: RenderedMessage) -> SendResult:
        self.calls.append(message)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return SendResult(success=True, message_id=f"msg-{len(self.calls)}")


@pytest.fixture
def clock():
    # A Monday morning
    return FakeClock(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def config():
    return NotificationConfig()


@pytest.fixture
def sender():
    return RecordingSender()
