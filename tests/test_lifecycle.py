"""Tests for settings, service wiring, and worker shutdown."""

import signal

import pytest

from schoolnotify.db.store import InMemoryKeyValueStore, SqlKeyValueStore
from schoolnotify.lifecycle.signals import SignalHandler
from schoolnotify.notifications import service as service_module
from schoolnotify.notifications.config import NotificationConfig
from schoolnotify.notifications.service import NotificationService, get_notification_service
from schoolnotify.settings import Settings


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SCHOOLNOTIFY_MAX_ATTEMPTS", raising=False)
        settings = Settings()
        assert settings.use_database is False
        assert settings.max_attempts == 3
        assert settings.retry_delays_minutes == [1, 5, 15]
        assert settings.school_name == "MA Malnu Kananga"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SCHOOLNOTIFY_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("SCHOOLNOTIFY_RETRY_DELAYS_MINUTES", "[2, 10]")
        settings = Settings()
        assert settings.max_attempts == 7
        assert NotificationConfig.from_settings(settings).retry_delays_seconds == (120, 600)


class TestNotificationService:
    """Building the pipeline from settings."""

    def test_in_memory_store(self):
        service = NotificationService.from_settings(Settings(use_database=False))
        assert isinstance(service.store, InMemoryKeyValueStore)

    def test_database_store(self):
        service = NotificationService.from_settings(Settings(use_database=True, database_url="sqlite://"))
        assert isinstance(service.store, SqlKeyValueStore)
        service.queue.enqueue({"message": {"to": "parent@example.com"}})
        assert service.queue.size() == 1

    def test_config_flows_to_components(self):
        service = NotificationService.from_settings(Settings(max_attempts=9, history_max=10))
        assert service.queue.config.max_attempts == 9
        assert service.tracker.config.history_max == 10

    def test_process_wide_instance(self, monkeypatch):
        monkeypatch.setattr(service_module, "_service", None)
        first = get_notification_service()
        assert get_notification_service() is first
        service_module.reset_notification_service()
        assert service_module._service is None


class TestSignalHandler:
    """Shutdown flag and callbacks."""

    def test_initial_state(self):
        handler = SignalHandler()
        assert handler.shutdown_requested is False
        assert handler.signal_count == 0

    def test_request_shutdown_runs_callbacks_once(self):
        handler = SignalHandler()
        calls = []
        handler.on_shutdown(lambda: calls.append("stop"))

        handler.request_shutdown()
        handler.request_shutdown()

        assert handler.shutdown_requested
        assert calls == ["stop"]
        assert handler.wait_for_shutdown(timeout=0)

    def test_failing_callback_does_not_block_others(self):
        handler = SignalHandler()
        calls = []

        def broken():
            raise RuntimeError("already stopped")

        handler.on_shutdown(broken)
        handler.on_shutdown(lambda: calls.append("stop"))
        handler.request_shutdown()
        assert calls == ["stop"]

    def test_wait_times_out(self):
        assert SignalHandler().wait_for_shutdown(timeout=0.01) is False

    def test_signal_triggers_shutdown(self):
        handler = SignalHandler()
        handler.register_signals([signal.SIGTERM])
        try:
            handler._handle_signal(signal.SIGTERM, None)
            assert handler.shutdown_requested
            assert handler.signal_count == 1
        finally:
            handler.restore_signals()
