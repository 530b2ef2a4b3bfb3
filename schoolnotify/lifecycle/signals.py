"""Signal handling for graceful worker shutdown."""

import logging
import signal
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SignalHandler:
    """Turns SIGTERM/SIGINT into an orderly stop of the delivery worker.

    The first signal sets the shutdown flag and runs the registered stop
    callbacks, which let in-flight sends finish. A second signal while
    callbacks are still running restores the default handlers so a third
    one terminates the process.
    """

    def __init__(self):
        self._shutdown_flag = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._original_handlers: Dict[int, object] = {}
        self._signal_count = 0

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_flag.is_set()

    @property
    def signal_count(self) -> int:
        return self._signal_count

    def on_shutdown(self, callback: Callable[[], None]) -> None:
        """Register a callback to run once when shutdown is requested."""
        self._callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Trigger shutdown programmatically (also used by the signal path)."""
        if self._shutdown_flag.is_set():
            return
        self._shutdown_flag.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback %r failed", callback)

    def _handle_signal(self, signum: int, frame) -> None:
        self._signal_count += 1
        logger.warning("Received %s (%d)", signal.Signals(signum).name, self._signal_count)

        if self._signal_count > 1:
            logger.critical("Repeated shutdown signal, restoring default handlers")
            self.restore_signals()
            return
        self.request_shutdown()

    def register_signals(self, signals: Optional[List[int]] = None) -> None:
        """Install handlers; defaults to SIGTERM and SIGINT."""
        if signals is None:
            signals = [signal.SIGTERM, signal.SIGINT]

        for sig in signals:
            try:
                self._original_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except (OSError, ValueError) as exc:
                # Not on the main thread, or unsupported on this platform
                logger.warning("Cannot register handler for signal %d: %s", sig, exc)

    def restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError) as exc:
                logger.warning("Cannot restore handler for signal %d: %s", sig, exc)
        self._original_handlers.clear()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown is requested. False on timeout."""
        return self._shutdown_flag.wait(timeout=timeout)
