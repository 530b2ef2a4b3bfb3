"""Performance Logging.

Timing for pipeline passes with slow-pass warnings.
"""

import logging
import time
from typing import Optional

from schoolnotify.logging_config.config import DEFAULT_LOGGING_CONFIG

_default_logger = logging.getLogger(__name__)


class PerformanceTimer:
    """Context manager timing one pipeline pass.

    Completed passes log at DEBUG, passes slower than the threshold at
    WARNING, and passes that raise at ERROR (the exception propagates).

    Example:
        with PerformanceTimer("queue drain", logger=logger) as timer:
            processor.drain()
        timer.duration_ms
    """

    def __init__(
        self,
        operation_name: str,
        threshold_ms: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        self.logger = logger or _default_logger
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {"duration_ms": round(self.duration_ms, 2)}

        if exc_type is not None:
            self.logger.error(
                "%s failed after %.1fms: %s",
                self.operation_name, self.duration_ms, exc_type.__name__, extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            self.logger.warning(
                "Slow operation: %s took %.1fms",
                self.operation_name, self.duration_ms, extra=extra,
            )
        else:
            self.logger.debug("%s completed in %.1fms", self.operation_name, self.duration_ms, extra=extra)
