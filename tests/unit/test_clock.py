"""Unit tests for the injectable clocks."""

from datetime import date, datetime, timedelta, timezone

import pytest

from gst_kernel.domain.clock import DeterministicClock, SystemClock

IST = timezone(timedelta(hours=5, minutes=30))


class TestDeterministicClock:

    def test_default_instant(self):
        clock = DeterministicClock()
        assert clock.now() == datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)
        assert clock.now() == clock.now()

    def test_rejects_naive_datetime(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            DeterministicClock(datetime(2024, 4, 1))

    def test_advance(self):
        clock = DeterministicClock(datetime(2024, 4, 18, 23, 0, tzinfo=timezone.utc))
        clock.advance(days=2, seconds=3600)
        assert clock.now() == datetime(2024, 4, 21, 0, 0, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 4, 21)

    def test_set_time(self):
        clock = DeterministicClock()
        clock.set_time(datetime(2024, 5, 20, tzinfo=timezone.utc))
        assert clock.today() == date(2024, 5, 20)

    def test_set_time_rejects_naive(self):
        clock = DeterministicClock()
        with pytest.raises(ValueError):
            clock.set_time(datetime(2024, 5, 20))

    def test_today_uses_clock_timezone(self):
        clock = DeterministicClock(datetime(2024, 4, 20, 23, 0, tzinfo=IST))
        assert clock.today() == date(2024, 4, 20)


class TestSystemClock:

    def test_aware_utc_by_default(self):
        assert SystemClock().now().tzinfo is timezone.utc

    def test_custom_timezone(self):
        assert SystemClock(IST).now().utcoffset() == timedelta(hours=5, minutes=30)
