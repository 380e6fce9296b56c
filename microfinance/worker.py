"""
Reminder Worker

Runs the reminder sweep on a fixed interval until stopped.

    python -m microfinance.worker
"""

import signal
import threading
from typing import Optional

from .dispatcher import NotificationDispatcher
from .config import get_config
from .logging_config import setup_logging, get_logger

logger = get_logger("microfinance.worker")


def run_worker(dispatcher: NotificationDispatcher, interval_seconds: Optional[float] = None,
               stop_event: Optional[threading.Event] = None,
               max_runs: Optional[int] = None) -> int:
    """
    Sweep, then wait interval_seconds, until stop_event is set or max_runs is reached

    A failing sweep is logged and the loop keeps going.

    Returns:
        Number of sweeps run
    """
    if interval_seconds is None:
        interval_seconds = get_config().sweep_interval_seconds
    stop_event = stop_event or threading.Event()

    runs = 0
    while not stop_event.is_set():
        try:
            result = dispatcher.sweep()
            if result.errors:
                logger.warning(f"Sweep finished with {len(result.errors)} error(s)")
        except Exception:
            logger.exception("Reminder sweep failed")
        runs += 1
        if max_runs is not None and runs >= max_runs:
            break
        stop_event.wait(interval_seconds)
    return runs


def main() -> None:
    from .api.dependencies import LendingSystem

    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    system = LendingSystem()
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping worker")
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    logger.info(f"Reminder worker started, sweeping every {config.sweep_interval_seconds}s")
    try:
        run_worker(system.dispatcher, config.sweep_interval_seconds, stop_event)
    finally:
        system.close()
        logger.info("Reminder worker stopped")


if __name__ == "__main__":
    main()
