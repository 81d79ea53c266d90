"""
Clock -- injectable time for movements, orders and reconciliation.

Responsibility:
    Services never call ``datetime.now()`` or ``date.today()`` directly.
    Timestamps (movement ``created_at``, record ``last_updated``, drift
    ``detected_at``) come from ``now()``; calendar dates on orders
    (``order_date``, ``received_date``, ``shipment_date``) come from
    ``today()``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Invariants enforced:
    - ``now()`` is always timezone-aware.
    - ``today()`` is the date in the clock's business timezone, so a
      warehouse operating in UTC-5 ships "today" until its own midnight.

Audit relevance:
    Every timestamp recorded on stock movements, inventory records and drift
    reports is traceable to an injected Clock instance.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.
    """

    def __init__(self, business_tz: tzinfo = timezone.utc):
        self.business_tz = business_tz

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time (timezone-aware)."""
        ...

    def today(self) -> date:
        """Calendar date of ``now()`` in the business timezone."""
        return self.now().astimezone(self.business_tz).date()


class SystemClock(Clock):
    """Production clock that returns actual system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Safe to share between the threads of a concurrency test.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until ``advance()``
          or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(
        self,
        fixed_time: datetime | None = None,
        business_tz: tzinfo = timezone.utc,
    ):
        super().__init__(business_tz)
        if fixed_time is not None and fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware time")
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta(0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware time")
        with self._lock:
            self._fixed_time = time
            self._offset = timedelta(0)

    def advance(self, seconds: float = 1) -> None:
        """Advance the clock by the specified seconds."""
        with self._lock:
            self._offset += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> date:
        """Advance by whole days and return the new business date."""
        self.advance(days * 86400)
        return self.today()

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
