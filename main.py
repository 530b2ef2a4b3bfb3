"""CLI entry point: python main.py [--once] [--log-format console]"""

import argparse
import logging
import sys

from schoolnotify.lifecycle import SignalHandler
from schoolnotify.logging_config import LogFormat, LoggingConfig, configure_logging
from schoolnotify.notifications.service import NotificationService
from schoolnotify.settings import get_settings

logger = logging.getLogger("schoolnotify.main")


def main():
    parser = argparse.ArgumentParser(
        description="School notification delivery worker"
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run one queue drain and digest tick, then exit"
    )
    parser.add_argument(
        "--log-format", choices=[f.value for f in LogFormat], default=None,
        help="Log output format (default: from settings)"
    )
    parser.add_argument(
        "--stop-timeout", type=float, default=30.0,
        help="Seconds to wait for in-flight sends on shutdown"
    )
    args = parser.parse_args()

    settings = get_settings()
    logging_config = LoggingConfig.from_settings(settings)
    if args.log_format:
        logging_config.format = LogFormat(args.log_format)
    configure_logging(logging_config)

    service = NotificationService.from_settings(settings)

    if args.once:
        summary = service.scheduler.run_pending()
        logger.info("Single pass complete: %s", summary)
        return 0

    signals = SignalHandler()
    signals.register_signals()
    service.start()
    logger.info("Delivery worker running, press Ctrl+C to stop")

    try:
        signals.wait_for_shutdown()
    finally:
        stopped = service.stop(timeout=args.stop_timeout)
        signals.restore_signals()

    if not stopped:
        logger.warning("Shutdown timed out with a send still in flight")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
