"""Tick scheduling for the queue processor and digest aggregator."""

from datetime import datetime
import logging
import threading
from typing import Callable, Optional

from schoolnotify.logging_config.performance import PerformanceTimer
from schoolnotify.notifications.config import DEFAULT_NOTIFICATION_CONFIG, NotificationConfig
from schoolnotify.notifications.digest import DigestAggregator
from schoolnotify.notifications.processor import ProcessResult, QueueProcessor
from schoolnotify.notifications.sender import Clock, SystemClock

logger = logging.getLogger(__name__)


class IntervalTimer:
    """Runs a callable on a background thread every ``interval`` seconds.

    Each run completes before the next wait starts; ``stop`` interrupts
    the wait but never a run in progress.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], object]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.func = func
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Timer %s started (every %.1fs)", self.name, self.interval)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the loop to exit and wait for it. False if still running after ``timeout``."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return True
        if thread is not threading.current_thread():
            thread.join(timeout)
        stopped = not thread.is_alive()
        if stopped:
            self._thread = None
            logger.info("Timer %s stopped", self.name)
        else:
            logger.warning("Timer %s still finishing its current run", self.name)
        return stopped

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.func()
            except Exception:
                logger.exception("Timer %s run failed", self.name)
            self._stop_event.wait(self.interval)


class NotificationScheduler:
    """Owns the queue and digest tick timers.

    Both ticks go through components that serialize their own state, so
    the two timers share no unguarded mutable state.
    """

    def __init__(
        self,
        processor: QueueProcessor,
        aggregator: DigestAggregator,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.processor = processor
        self.aggregator = aggregator
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock or SystemClock()
        self._queue_timer = IntervalTimer("queue-processor", self.config.queue_tick_seconds, self.process_queue)
        self._digest_timer = IntervalTimer("digest-aggregator", self.config.digest_tick_seconds, self.process_digests)

    @property
    def is_running(self) -> bool:
        return self._queue_timer.is_running or self._digest_timer.is_running

    def start(self) -> None:
        self._queue_timer.start()
        self._digest_timer.start()
        logger.info("Notification scheduler started")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop both timers, letting in-flight sends finish."""
        queue_stopped = self._queue_timer.stop(timeout)
        digest_stopped = self._digest_timer.stop(timeout)
        logger.info("Notification scheduler stopped")
        return queue_stopped and digest_stopped

    def process_queue(self, now: Optional[datetime] = None) -> ProcessResult:
        with PerformanceTimer("queue drain", logger=logger):
            return self.processor.drain(now or self.clock.now())

    def process_digests(self, now: Optional[datetime] = None) -> int:
        with PerformanceTimer("digest tick", logger=logger):
            flushed = self.aggregator.tick(now or self.clock.now())
        if flushed:
            logger.info("Flushed %d digest(s)", flushed, extra={"flushed": flushed})
        return flushed

    def run_pending(self, now: Optional[datetime] = None) -> dict:
        """Run one queue drain and one digest tick synchronously."""
        now = now or self.clock.now()
        result = self.process_queue(now)
        flushed = self.process_digests(now)
        return {**result.to_dict(), "digests_flushed": flushed}
