from __future__ import annotations

import threading
import time

from hypeledger.core.locks import KeyedLocks


def test_same_key_is_serialized() -> None:
    locks = KeyedLocks()
    inside = 0
    peak = 0
    guard = threading.Lock()

    def work() -> None:
        nonlocal inside, peak
        with locks.hold(("ada", "drop-1")):
            with guard:
                inside += 1
                peak = max(peak, inside)
            time.sleep(0.002)
            with guard:
                inside -= 1

    threads = [threading.Thread(target=work) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert peak == 1


def test_different_keys_do_not_contend() -> None:
    locks = KeyedLocks()
    with locks.hold(("ada", "drop-1")):
        acquired = threading.Event()

        def other() -> None:
            with locks.hold(("bob", "drop-1")):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=2.0)
        t.join()


def test_locks_are_dropped_when_released() -> None:
    locks = KeyedLocks()
    with locks.hold("a"):
        with locks.hold("b"):
            assert len(locks) == 2
    assert len(locks) == 0
