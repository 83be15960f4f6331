import threading
import time

from figurine_api.services.locks import KeyedLock


def test_hold_serializes_same_key():
    locks = KeyedLock()
    active = 0
    overlap = []
    guard = threading.Lock()

    def worker():
        nonlocal active
        with locks.hold("PGC-AAAA1111"):
            with guard:
                active += 1
                overlap.append(active)
            time.sleep(0.01)
            with guard:
                active -= 1

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert max(overlap) == 1


def test_distinct_keys_do_not_block_each_other():
    locks = KeyedLock()
    entered = threading.Event()

    def other_key():
        with locks.hold("b"):
            entered.set()

    with locks.hold("a"):
        thread = threading.Thread(target=other_key)
        thread.start()
        assert entered.wait(timeout=1.0)
        thread.join()


def test_entries_are_released_after_use():
    locks = KeyedLock()

    with locks.hold("a"):
        with locks.hold("b"):
            assert locks.active_keys() == 2

    assert locks.active_keys() == 0
