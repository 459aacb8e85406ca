"""Tests for per-key locking."""

import threading
import time

from marketintel.locking import KeyedLock


def test_same_key_is_serialized():
    locks = KeyedLock()
    active = []
    overlaps = []

    def worker():
        with locks("k"):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            active.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside_a = threading.Event()
    release_a = threading.Event()

    def hold_a():
        with locks("a"):
            inside_a.set()
            release_a.wait(timeout=5)

    t = threading.Thread(target=hold_a)
    t.start()
    inside_a.wait(timeout=5)

    acquired_b = threading.Event()
    with locks("b"):
        acquired_b.set()
    release_a.set()
    t.join()

    assert acquired_b.is_set()


def test_locks_are_released_from_registry():
    locks = KeyedLock()
    with locks("a"):
        assert len(locks) == 1
    assert len(locks) == 0
