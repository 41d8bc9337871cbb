import threading
import time

import pytest

from carrymark.core.exceptions import ConcurrentUpdateConflict, ValidationError
from carrymark.services import ConcurrencyManager


def test_lock_is_reentrant_for_same_holder():
    manager = ConcurrencyManager()

    first = manager.acquire_lock("carry_mark:a", "holder-1")
    second = manager.acquire_lock("carry_mark:a", "holder-1")

    assert first == second
    assert manager.get_lock_info("carry_mark:a").depth == 2
    manager.release_lock(first)
    assert manager.get_lock_info("carry_mark:a") is not None
    manager.release_lock(first)
    assert manager.get_lock_info("carry_mark:a") is None


def test_lock_times_out_for_other_holder():
    manager = ConcurrencyManager()
    manager.acquire_lock("carry_mark:a", "holder-1")

    with pytest.raises(ConcurrentUpdateConflict) as excinfo:
        manager.acquire_lock("carry_mark:a", "holder-2", timeout=0.05)

    assert excinfo.value.error_code == "LOCK_TIMEOUT"
    assert manager.get_statistics()["lock_timeouts"] == 1


def test_waiting_holder_gets_lock_after_release():
    manager = ConcurrencyManager()
    lock_id = manager.acquire_lock("carry_mark:a", "holder-1")
    acquired = []

    def wait_for_lock():
        acquired.append(manager.acquire_lock("carry_mark:a", "holder-2", timeout=2.0))

    waiter = threading.Thread(target=wait_for_lock)
    waiter.start()
    time.sleep(0.05)
    assert acquired == []

    manager.release_lock(lock_id)
    waiter.join()

    assert len(acquired) == 1
    assert manager.get_lock_info("carry_mark:a").holder_id == "holder-2"


def test_locks_on_different_resources_are_independent():
    manager = ConcurrencyManager()

    with manager.lock("carry_mark:a", "holder-1"):
        with manager.lock("carry_mark:b", "holder-2", timeout=0.05):
            assert len(manager.get_holder_locks("holder-2")) == 1

    assert manager.get_statistics()["locks_held"] == 0


def test_release_unknown_lock_returns_false():
    assert ConcurrencyManager().release_lock("missing") is False


def test_lock_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        ConcurrencyManager(lock_timeout=0)


def test_execute_with_retry_returns_after_conflicts():
    manager = ConcurrencyManager()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrentUpdateConflict("lost race")
        return "done"

    assert manager.execute_with_retry(flaky, max_retries=3, backoff_factor=0.0) == "done"
    assert len(calls) == 3
    assert manager.get_statistics()["retries"] == 2


def test_execute_with_retry_reraises_last_conflict():
    manager = ConcurrencyManager()
    calls = []

    def always_conflicts():
        calls.append(1)
        raise ConcurrentUpdateConflict(f"lost race {len(calls)}")

    with pytest.raises(ConcurrentUpdateConflict, match="lost race 3"):
        manager.execute_with_retry(always_conflicts, max_retries=2, backoff_factor=0.0)

    assert manager.get_statistics()["conflicts_surfaced"] == 1


def test_execute_with_retry_does_not_retry_other_errors():
    manager = ConcurrencyManager()
    calls = []

    def fails():
        calls.append(1)
        raise ValueError("boom")

    with pytest.raises(ValueError):
        manager.execute_with_retry(fails, max_retries=3, backoff_factor=0.0)

    assert len(calls) == 1
