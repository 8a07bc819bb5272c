"""
Tests for keyed in-process locks.
"""
import threading
import time

import pytest

from bonus_ledger.exceptions import StorageTimeoutError
from bonus_ledger.locks import LockClient


def _wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


class TestLockClient:
    """Test lock lifetime and contention."""

    def test_entry_dropped_after_release(self):
        locks = LockClient()

        with locks.lock("bonus_entries:a"):
            assert "bonus_entries:a" in locks._locks

        assert locks._locks == {}

    def test_entry_dropped_after_timeout(self):
        locks = LockClient()

        with locks.lock("bonus_entries:a"):
            with pytest.raises(StorageTimeoutError):
                with locks.lock("bonus_entries:a", timeout=0.01):
                    pass
            assert locks._locks["bonus_entries:a"].holders == 1

        assert locks._locks == {}

    def test_waiter_gets_the_same_lock(self):
        locks = LockClient()
        acquired = threading.Event()

        def wait():
            with locks.lock("bonus_entries:a", timeout=5):
                acquired.set()

        with locks.lock("bonus_entries:a"):
            waiter = threading.Thread(target=wait)
            waiter.start()
            _wait_for(lambda: locks._locks["bonus_entries:a"].holders == 2)
            assert not acquired.is_set()

        waiter.join(timeout=5)
        assert acquired.is_set()
        assert locks._locks == {}

    def test_many_keys_do_not_accumulate(self):
        locks = LockClient()

        for n in range(500):
            with locks.lock(f"bonus_entries:{n}"):
                pass

        assert locks._locks == {}
