"""
Tests for keyed ledger locks
"""
import threading

import pytest

from famledger.application.ledger_locks import KeyedLockTable, get_lock_table, income_key, payment_key
from famledger.config import get_settings
from famledger.domain.errors import LockTimeout


def test_keys_are_released_after_block():
    locks = KeyedLockTable(timeout=0.05)
    with locks.hold([payment_key(1), income_key(2)]):
        pass
    with locks.hold([payment_key(1), income_key(2)]):
        pass


def test_duplicate_keys_are_taken_once():
    locks = KeyedLockTable(timeout=0.05)
    with locks.hold([payment_key(1), payment_key(1)]):
        pass


def test_timeout_raises_and_releases_partial_acquisitions():
    locks = KeyedLockTable(timeout=0.05)
    with locks.hold([payment_key(7)]):
        # ("income", 3) sorts first and is acquired before the payment key times out
        with pytest.raises(LockTimeout) as exc:
            with locks.hold([payment_key(7), income_key(3)]):
                pass
        assert exc.value.key == ("payment", 7)

    with locks.hold([income_key(3)], timeout=0.05):
        pass


def test_release_on_exception():
    locks = KeyedLockTable(timeout=0.05)
    with pytest.raises(RuntimeError):
        with locks.hold([payment_key(1)]):
            raise RuntimeError("boom")
    with locks.hold([payment_key(1)]):
        pass


def test_other_thread_waits_for_holder():
    locks = KeyedLockTable(timeout=2.0)
    order = []
    entered = threading.Event()

    def second():
        entered.wait()
        with locks.hold([payment_key(1)]):
            order.append("second")

    t = threading.Thread(target=second)
    with locks.hold([payment_key(1)]):
        t.start()
        entered.set()
        order.append("first")
    t.join(timeout=5)

    assert order == ["first", "second"]


def test_distinct_keys_do_not_block():
    locks = KeyedLockTable(timeout=0.05)
    with locks.hold([payment_key(1)]):
        with locks.hold([payment_key(2), income_key(1)]):
            pass


def test_released_keys_leave_the_table():
    locks = KeyedLockTable(timeout=0.05)
    for payment_id in range(100):
        with locks.hold([payment_key(payment_id), income_key(payment_id)]):
            assert len(locks) == 2
    assert len(locks) == 0


def test_timed_out_keys_leave_the_table():
    locks = KeyedLockTable(timeout=0.05)
    with locks.hold([payment_key(7)]):
        with pytest.raises(LockTimeout):
            with locks.hold([payment_key(7), income_key(3)]):
                pass
        assert len(locks) == 1
    assert len(locks) == 0


def test_waiter_keeps_lock_alive_after_holder_leaves():
    locks = KeyedLockTable(timeout=2.0)
    entered = threading.Event()
    results = []

    def waiter():
        entered.set()
        with locks.hold([payment_key(1)]):
            results.append(len(locks))

    t = threading.Thread(target=waiter)
    with locks.hold([payment_key(1)]):
        t.start()
        entered.wait()
    t.join(timeout=5)

    assert results == [1]
    assert len(locks) == 0


def test_process_lock_table_is_shared():
    assert get_lock_table() is get_lock_table()
    assert get_lock_table().timeout == get_settings().LEDGER_LOCK_TIMEOUT_SECONDS
