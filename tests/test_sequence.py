from __future__ import annotations

import threading

from pycombo.sequence import SpawnSequence


def test_sequence_is_strictly_increasing() -> None:
    sequence = SpawnSequence()
    assert sequence.last is None

    values = [sequence.next() for _ in range(5)]

    assert values == [0, 1, 2, 3, 4]
    assert sequence.last == 4


def test_sequence_never_repeats_across_threads() -> None:
    sequence = SpawnSequence(start=10)
    seen: list[int] = []
    lock = threading.Lock()

    def _worker() -> None:
        for _ in range(200):
            value = sequence.next()
            with lock:
                seen.append(value)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(seen) == len(set(seen)) == 800
    assert min(seen) == 10
