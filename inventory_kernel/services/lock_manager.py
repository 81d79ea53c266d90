"""
KeyedLockManager -- in-process mutual exclusion per (product, warehouse).

Responsibility:
    Serializes mutations of the same inventory key inside one process while
    letting operations on disjoint keys run in parallel.  Database row locks
    (``SELECT ... FOR UPDATE`` on inventory_records) give the same guarantee
    across processes on PostgreSQL.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used only by FulfillmentCoordinator, outside the database transaction:
    every key lock is held before the transaction opens and released after
    it commits or rolls back.

Invariants enforced:
    - Keys are acquired in one global sort order, so two operations over
      overlapping key sets cannot deadlock.
    - Lock acquisition is bounded by a timeout; no unbounded waits.
    - Registry size is bounded by the keys in use, not every key ever seen.

Failure modes:
    - LockTimeoutError if any key lock is not acquired within the timeout.
      Locks already taken by the failed call are released.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID

from inventory_kernel.exceptions import LockTimeoutError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.lock_manager")

InventoryKey = tuple[UUID, UUID]


def sort_keys(keys: Iterable[InventoryKey]) -> list[InventoryKey]:
    """Distinct keys in the global acquisition order."""
    return sorted(set(keys), key=lambda k: (str(k[0]), str(k[1])))


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0  # holders plus waiters


class KeyedLockManager:
    """
    Per-(product, warehouse) locks shared by every coordinator in a process.

    Only keys with a holder or a waiter have an entry; the entry is dropped
    when its last user leaves, so the registry stays as small as the set of
    keys currently in use.

    Usage:
        with lock_manager.acquire([(product_id, warehouse_id)], timeout=5):
            ...
    """

    def __init__(self, default_timeout: float = 10.0):
        self._default_timeout = default_timeout
        self._guard = threading.Lock()
        self._locks: dict[InventoryKey, _KeyLock] = {}

    def tracked_key_count(self) -> int:
        """Keys that currently have a holder or a waiter."""
        with self._guard:
            return len(self._locks)

    def _check_out(self, key: InventoryKey) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry.lock

    def _check_in(self, key: InventoryKey) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def acquire(
        self,
        keys: Iterable[InventoryKey],
        timeout: float | None = None,
    ) -> Iterator[list[InventoryKey]]:
        """
        Hold every lock in ``keys`` for the duration of the block.

        Yields:
            The keys in acquisition order.

        Raises:
            LockTimeoutError: A key was not acquired within ``timeout``.
        """
        if timeout is None:
            timeout = self._default_timeout
        ordered = sort_keys(keys)
        held: list[tuple[InventoryKey, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._check_out(key)
                if not lock.acquire(timeout=timeout):
                    self._check_in(key)
                    key_label = f"{key[0]}/{key[1]}"
                    logger.warning(
                        "key_lock_timeout",
                        extra={"key": key_label, "timeout_seconds": timeout},
                    )
                    raise LockTimeoutError(key_label, timeout)
                held.append((key, lock))
            yield ordered
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._check_in(key)
