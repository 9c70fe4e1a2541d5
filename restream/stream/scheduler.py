"""Cancellable one-shot timers for automatic stream stops."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from restream.config import SCHEDULER_POLL_SECONDS

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs a callback once after a delay unless cancelled first.

    The delay runs on its own daemon thread. The thread sleeps in slices of
    at most SCHEDULER_POLL_SECONDS and checks the cancellation flag between
    slices, so a cancel takes effect within one slice.

    Usage:
        scheduler = Scheduler(3600, stop_stream)
        ...
        scheduler.cancel()
    """

    def __init__(
        self,
        seconds: float,
        callback: Callable[[], None],
        autostart: bool = True,
        poll_interval: float = SCHEDULER_POLL_SECONDS,
    ):
        """Initialize the timer.

        Args:
            seconds: Delay before the callback runs (negative treated as 0)
            callback: Zero-argument callable run on the timer thread
            autostart: Start counting immediately. Pass False when the
                handle must be registered somewhere before it can fire.
            poll_interval: Longest uninterrupted sleep between cancel checks
        """
        self.seconds = max(0.0, float(seconds))
        self._callback = callback
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._fired = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if autostart:
            self.start()

    def start(self) -> None:
        """Start the countdown. Calling it twice has no effect."""
        if self._thread is not None:
            return

        logger.info("Scheduling stop in %d seconds", self.seconds)
        self._thread = threading.Thread(target=self._run, daemon=True, name="stream-scheduler")
        self._thread.start()

    def cancel(self) -> None:
        """Cancel the scheduled callback."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the timer thread to finish (tests and shutdown)."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        deadline = time.monotonic() + self.seconds

        while True:
            if self._cancelled.is_set():
                logger.info("Scheduler cancelled")
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            # Event.wait returns early when cancel() is called
            self._cancelled.wait(min(remaining, self._poll_interval))

        if self._cancelled.is_set():
            logger.info("Scheduler cancelled")
            return

        logger.info("Scheduler firing callback")
        self._fired.set()
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled callback failed")


def calculate_seconds_until(datetime_str: str, timezone_str: str) -> Optional[int]:
    """Calculate whole seconds until a local date-time in a named timezone.

    Args:
        datetime_str: Local date-time, e.g. "2024-01-15T14:30" or
            "2024-01-15T14:30:00"
        timezone_str: IANA timezone name, e.g. "Asia/Ho_Chi_Minh"

    Returns:
        Seconds until that instant, 0 if it is already in the past, or
        None if the zone or date-time cannot be resolved (including local
        times that are skipped or repeated by a DST transition).
    """
    try:
        tz = ZoneInfo(timezone_str)
    except (ZoneInfoNotFoundError, ValueError):
        return None

    try:
        naive = datetime.fromisoformat(datetime_str)
    except (TypeError, ValueError):
        return None
    if naive.tzinfo is not None:
        return None

    earlier = naive.replace(tzinfo=tz, fold=0)
    later = naive.replace(tzinfo=tz, fold=1)
    if earlier.utcoffset() != later.utcoffset():
        return None

    target_utc = earlier.astimezone(timezone.utc)
    now_utc = datetime.now(timezone.utc)

    if target_utc > now_utc:
        return int((target_utc - now_utc).total_seconds())
    return 0
