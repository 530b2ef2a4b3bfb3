"""Structured Logging & Delivery Tracing.

Provides structured JSON logging, delivery ID propagation,
and performance timing for the notification pipeline.
"""

from schoolnotify.logging_config.config import LogFormat, LoggingConfig, LogLevel
from schoolnotify.logging_config.context import DeliveryContext, get_context_dict
from schoolnotify.logging_config.performance import PerformanceTimer
from schoolnotify.logging_config.setup import configure_logging, get_logger

__all__ = [
    "DeliveryContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "configure_logging",
    "get_context_dict",
    "get_logger",
]
