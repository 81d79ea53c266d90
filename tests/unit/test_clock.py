"""Tests for the injectable clock."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from inventory_kernel.domain.clock import DeterministicClock, SystemClock


def test_system_clock_is_timezone_aware():
    assert SystemClock().now().tzinfo is not None


def test_deterministic_clock_is_stable_until_advanced():
    clock = DeterministicClock()
    first = clock.now()
    assert clock.now() == first
    clock.advance(30)
    assert (clock.now() - first).total_seconds() == 30


def test_tick_and_set_time():
    clock = DeterministicClock(datetime(2025, 3, 1, 23, 59, 59, tzinfo=timezone.utc))
    assert clock.tick() == datetime(2025, 3, 2, 0, 0, 0, tzinfo=timezone.utc)
    assert clock.today() == date(2025, 3, 2)

    clock.set_time(datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert clock.today() == date(2026, 1, 1)


def test_today_uses_business_timezone():
    eastern = timezone(timedelta(hours=-5))
    clock = DeterministicClock(
        datetime(2025, 6, 1, 2, 30, tzinfo=timezone.utc), business_tz=eastern
    )
    # 02:30 UTC is still the previous evening five hours west
    assert clock.today() == date(2025, 5, 31)
    assert clock.now().date() == date(2025, 6, 1)


def test_advance_days():
    clock = DeterministicClock(datetime(2025, 1, 30, 9, tzinfo=timezone.utc))
    assert clock.advance_days(3) == date(2025, 2, 2)


def test_naive_time_rejected():
    with pytest.raises(ValueError):
        DeterministicClock(datetime(2025, 1, 1))
    with pytest.raises(ValueError):
        DeterministicClock().set_time(datetime(2025, 1, 1))


def test_shared_between_threads():
    clock = DeterministicClock()
    start = clock.now()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: clock.advance(1), range(200)))
    assert clock.now() - start == timedelta(seconds=200)
