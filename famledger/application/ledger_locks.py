"""
Keyed per-entity locks for attribution ledger writers.

Writers that touch the derived totals of a payment or an income event hold
that entity's lock for the whole check-and-write transaction. Keys are
``("payment", id)`` / ``("income", id)``; several keys are always taken in
sorted order so two writers never deadlock on the same pair.
"""
import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterable, Tuple

from famledger.config import get_settings
from famledger.domain.errors import LockTimeout

logger = logging.getLogger(__name__)

LockKey = Tuple[str, int]


def payment_key(payment_id: int) -> LockKey:
    return ("payment", payment_id)


def income_key(income_event_id: int) -> LockKey:
    return ("income", income_event_id)


class KeyedLockTable:
    """
    ``threading.Lock`` per key, created on demand

    One table is shared by every writer in a process. A key's lock is dropped
    from the table once no writer holds or waits on it.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[LockKey, threading.Lock] = {}
        self._users: dict[LockKey, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: LockKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: LockKey) -> None:
        with self._guard:
            users = self._users[key] - 1
            if users:
                self._users[key] = users
            else:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[LockKey], timeout: float | None = None):
        """
        Acquire every key (sorted, de-duplicated) or none of them.

        Raises:
            LockTimeout: a key could not be acquired within ``timeout`` seconds
        """
        wait = self.timeout if timeout is None else timeout
        checked_out: list[LockKey] = []
        acquired: list[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=wait):
                    logger.warning("Ledger lock timeout on %s #%s after %.1fs", key[0], key[1], wait)
                    raise LockTimeout(key, wait)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(checked_out):
                self._checkin(key)


@lru_cache
def get_lock_table() -> KeyedLockTable:
    """One lock table per process, shared by every ledger writer"""
    return KeyedLockTable(timeout=get_settings().LEDGER_LOCK_TIMEOUT_SECONDS)
