"""Tests for the stop scheduler and absolute-time calculation."""

import threading
import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from restream.stream.scheduler import Scheduler, calculate_seconds_until


class Counter:
    def __init__(self):
        self.count = 0
        self.fired_at = None
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.count += 1
            self.fired_at = time.monotonic()


class TestScheduler:
    """Test Scheduler timing and cancellation."""

    def test_fires_once_after_delay(self):
        counter = Counter()
        started = time.monotonic()

        Scheduler(1, counter)
        time.sleep(1.5)

        assert counter.count == 1
        assert 1.0 <= counter.fired_at - started < 1.3

    def test_never_fires_early(self):
        counter = Counter()

        Scheduler(1, counter)
        time.sleep(0.8)

        assert counter.count == 0

    def test_cancel_before_deadline_prevents_callback(self):
        counter = Counter()

        scheduler = Scheduler(2, counter)
        time.sleep(0.5)
        scheduler.cancel()
        time.sleep(2.0)

        assert counter.count == 0
        assert scheduler.cancelled
        assert not scheduler.fired

    def test_cancel_takes_effect_within_poll_interval(self):
        counter = Counter()
        scheduler = Scheduler(60, counter)

        cancelled_at = time.monotonic()
        scheduler.cancel()
        scheduler.join(timeout=1)

        assert time.monotonic() - cancelled_at < 0.2
        assert counter.count == 0

    def test_zero_delay_fires_immediately(self):
        counter = Counter()

        scheduler = Scheduler(0, counter)
        scheduler.join(timeout=1)

        assert counter.count == 1
        assert scheduler.fired

    def test_autostart_false_waits_for_start(self):
        counter = Counter()

        scheduler = Scheduler(0, counter, autostart=False)
        time.sleep(0.2)
        assert counter.count == 0

        scheduler.start()
        scheduler.start()
        scheduler.join(timeout=1)
        assert counter.count == 1

    def test_callback_exception_does_not_escape(self):
        def boom():
            raise RuntimeError("callback failed")

        scheduler = Scheduler(0, boom)
        scheduler.join(timeout=1)

        assert scheduler.fired


class TestCalculateSecondsUntil:
    """Test calculate_seconds_until."""

    def test_ten_minutes_ahead(self):
        tz_name = "Asia/Ho_Chi_Minh"
        target = datetime.now(ZoneInfo(tz_name)) + timedelta(minutes=10)
        target_str = target.strftime("%Y-%m-%dT%H:%M:%S")

        seconds = calculate_seconds_until(target_str, tz_name)

        assert 598 <= seconds <= 601

    def test_other_timezone_same_instant(self):
        target = datetime.now(ZoneInfo("America/New_York")) + timedelta(minutes=10)
        target_str = target.strftime("%Y-%m-%dT%H:%M:%S")

        seconds = calculate_seconds_until(target_str, "America/New_York")

        assert 598 <= seconds <= 601

    def test_past_returns_zero(self):
        assert calculate_seconds_until("2020-01-15T14:30", "UTC") == 0

    def test_minute_precision_format(self):
        target = datetime.now(ZoneInfo("UTC")) + timedelta(hours=2)
        target_str = target.strftime("%Y-%m-%dT%H:%M")

        seconds = calculate_seconds_until(target_str, "UTC")

        assert 7140 <= seconds <= 7200

    def test_unknown_timezone_returns_none(self):
        assert calculate_seconds_until("2030-01-15T14:30", "Not/AZone") is None

    def test_bad_datetime_returns_none(self):
        assert calculate_seconds_until("tomorrow at noon", "UTC") is None

    def test_nonexistent_local_time_returns_none(self):
        # 02:30 is skipped when US clocks spring forward on 2030-03-10
        assert calculate_seconds_until("2030-03-10T02:30", "America/New_York") is None

    def test_ambiguous_local_time_returns_none(self):
        # 01:30 happens twice when US clocks fall back on 2030-11-03
        assert calculate_seconds_until("2030-11-03T01:30", "America/New_York") is None
