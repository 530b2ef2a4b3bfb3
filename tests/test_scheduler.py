"""Tests for interval timers and the notification scheduler."""

import threading
from datetime import datetime, timezone

import pytest

from schoolnotify.notifications.config import NotificationConfig
from schoolnotify.notifications.processor import ProcessResult
from schoolnotify.notifications.scheduler import IntervalTimer, NotificationScheduler


class StubProcessor:
    def __init__(self):
        self.calls = []
        self.ran = threading.Event()

    def drain(self, now=None):
        self.calls.append(now)
        self.ran.set()
        return ProcessResult(processed=1, sent=1)


class StubAggregator:
    def __init__(self):
        self.calls = []
        self.ran = threading.Event()

    def tick(self, now=None):
        self.calls.append(now)
        self.ran.set()
        return 2


class TestIntervalTimer:
    """Background timer lifecycle."""

    def test_runs_until_stopped(self):
        calls = []
        ran_twice = threading.Event()

        def work():
            calls.append(1)
            if len(calls) >= 2:
                ran_twice.set()

        timer = IntervalTimer("test", 0.01, work)
        timer.start()
        assert ran_twice.wait(2.0)
        assert timer.stop(timeout=2.0)
        assert not timer.is_running

        count = len(calls)
        threading.Event().wait(0.05)
        assert len(calls) == count

    def test_exception_does_not_kill_timer(self):
        calls = []
        recovered = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            recovered.set()

        timer = IntervalTimer("flaky", 0.01, flaky)
        timer.start()
        assert recovered.wait(2.0)
        timer.stop(timeout=2.0)

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            IntervalTimer("bad", 0, lambda: None)

    def test_stop_before_start(self):
        assert IntervalTimer("idle", 1.0, lambda: None).stop() is True


class TestNotificationScheduler:
    """Two independent ticks with an injected clock."""

    def test_run_pending_uses_clock(self, clock):
        processor, aggregator = StubProcessor(), StubAggregator()
        scheduler = NotificationScheduler(processor, aggregator, clock=clock)

        summary = scheduler.run_pending()

        assert processor.calls == [clock.now()]
        assert aggregator.calls == [clock.now()]
        assert summary["sent"] == 1
        assert summary["digests_flushed"] == 2

    def test_run_pending_explicit_now(self, clock):
        processor, aggregator = StubProcessor(), StubAggregator()
        scheduler = NotificationScheduler(processor, aggregator, clock=clock)
        now = datetime(2024, 1, 16, 8, 0, tzinfo=timezone.utc)

        scheduler.run_pending(now)
        assert processor.calls == [now]
        assert aggregator.calls == [now]

    def test_start_and_stop(self, clock):
        processor, aggregator = StubProcessor(), StubAggregator()
        config = NotificationConfig(queue_tick_seconds=0.01, digest_tick_seconds=0.01)
        scheduler = NotificationScheduler(processor, aggregator, config=config, clock=clock)

        scheduler.start()
        assert scheduler.is_running
        assert processor.ran.wait(2.0)
        assert aggregator.ran.wait(2.0)

        assert scheduler.stop(timeout=2.0)
        assert not scheduler.is_running
