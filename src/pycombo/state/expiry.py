"""Expiry sweep and its periodic scheduler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from pycombo._constants import EXPLOSION_DURATION_MS, HEART_EXPIRY_MS, HORSE_EXPIRY_MS
from pycombo.models._base import now_ms
from pycombo.models.state import ComboSnapshot, LifecycleState
from pycombo.state.store import ComboStore

_logger = logging.getLogger(__name__)


def sweep(
    snapshot: ComboSnapshot,
    now: int,
    *,
    entity_expiry_ms: int = HORSE_EXPIRY_MS,
    explosion_ms: int = EXPLOSION_DURATION_MS,
    record_expiry_ms: int = HEART_EXPIRY_MS,
) -> ComboSnapshot:
    """Advance every entity and record by wall-clock age.

    - idle entities are flagged expiring,
    - entities expiring for at least *explosion_ms* are removed and their
      recorded count is subtracted from the aggregate,
    - records older than *record_expiry_ms* are dropped.

    All changes land in one new snapshot; the input is returned unchanged
    when nothing is due.
    """
    changed = False
    entities = dict(snapshot.entities)
    aggregate = snapshot.aggregate

    for username, entity in snapshot.entities.items():
        if entity.is_expiring:
            started = entity.expiry_start_timestamp
            if started is None or now - started >= explosion_ms:
                del entities[username]
                aggregate = aggregate.without(username, entity.count)
                changed = True
        elif now - entity.last_update_timestamp >= entity_expiry_ms:
            entities[username] = entity.model_copy(
                update={
                    "lifecycle_state": LifecycleState.EXPIRING,
                    "expiry_start_timestamp": now,
                }
            )
            changed = True

    records = tuple(r for r in snapshot.records if now - r.timestamp < record_expiry_ms)
    if len(records) != len(snapshot.records):
        changed = True

    if not changed:
        return snapshot

    _logger.debug(
        "Sweep at %s: entities %d -> %d, records %d -> %d",
        now,
        len(snapshot.entities),
        len(entities),
        len(snapshot.records),
        len(records),
    )
    return snapshot.evolve(entities=entities, aggregate=aggregate, records=records)


class ExpiryScheduler:
    """Runs :func:`sweep` against a store on a fixed period.

    One sweep happens immediately on :meth:`start`, then every *interval*
    seconds until :meth:`stop`.
    """

    def __init__(
        self,
        store: ComboStore,
        *,
        interval: float = 1.0,
        clock: Callable[[], int] = now_ms,
        entity_expiry_ms: int = HORSE_EXPIRY_MS,
        explosion_ms: int = EXPLOSION_DURATION_MS,
        record_expiry_ms: int = HEART_EXPIRY_MS,
    ) -> None:
        self._store = store
        self._interval = interval
        self._clock = clock
        self._entity_expiry_ms = entity_expiry_ms
        self._explosion_ms = explosion_ms
        self._record_expiry_ms = record_expiry_ms
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> ComboSnapshot:
        """Run one sweep now and return the resulting snapshot."""
        return self._store.replace(
            sweep,
            self._clock(),
            entity_expiry_ms=self._entity_expiry_ms,
            explosion_ms=self._explosion_ms,
            record_expiry_ms=self._record_expiry_ms,
        )

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="pycombo-expiry")
        _logger.debug("Expiry scheduler started interval=%.3fs", self._interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Expiry scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:  # noqa: BLE001
                _logger.exception("Expiry sweep failed")
            await asyncio.sleep(self._interval)
