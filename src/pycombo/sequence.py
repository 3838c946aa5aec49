"""Process-wide spawn/record identifier sequence."""

from __future__ import annotations

import itertools
import threading


class SpawnSequence:
    """Strictly increasing identifier generator.

    One instance is owned by the process and shared by every overlay that
    spawns bodies. Identifiers are never reused, so the simulator can
    deduplicate spawn requests by set membership.
    """

    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()
        self._last: int | None = None

    def next(self) -> int:
        """Return the next identifier."""
        with self._lock:
            value = next(self._counter)
            self._last = value
            return value

    @property
    def last(self) -> int | None:
        """Most recently issued identifier, if any."""
        return self._last
