"""Aggregation store.

State transitions are pure functions taking a :class:`ComboSnapshot` and
returning a new one (or the very same object when nothing changed).
:class:`ComboStore` is the only component allowed to hold the current
snapshot; it swaps the reference in a single assignment so readers never
observe a half-applied update.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from typing import Concatenate, ParamSpec

from pycombo._constants import DEFAULT_ENTITY_COLOR
from pycombo.models.event import Category, ComboEvent
from pycombo.models.state import (
    ComboSnapshot,
    LifecycleState,
    PersistentUserEntity,
    TimestampedRecord,
)
from pycombo.placement import Corner, place

_logger = logging.getLogger(__name__)

P = ParamSpec("P")

SnapshotListener = Callable[[ComboSnapshot, ComboSnapshot], None]


def add_event(
    snapshot: ComboSnapshot,
    event: ComboEvent,
    *,
    persistent_mode: bool = True,
    corner: Corner | str = Corner.BOTTOM_LEFT,
    now: int | None = None,
    rng: random.Random | None = None,
) -> ComboSnapshot:
    """Apply one combo event.

    Secondary events append a record. Primary events bump the per-user
    counter and, in persistent mode, create or refresh the user's entity.
    Events carrying a producer identifier that was already applied are
    ignored; events without one are always applied.
    """
    if event.id is not None and event.id in snapshot.processed_ids:
        _logger.debug("Skipping already processed event id=%s", event.id)
        return snapshot

    ts = event.timestamp if now is None else now
    processed = snapshot.processed_ids
    if event.id is not None:
        processed = processed.add(event.id)

    if event.type == Category.SECONDARY:
        record = TimestampedRecord(username=event.username, timestamp=ts)
        return snapshot.evolve(records=(*snapshot.records, record), processed_ids=processed)

    updated = snapshot.evolve(aggregate=snapshot.aggregate.increment(event.username), processed_ids=processed)
    if persistent_mode:
        updated = upsert_entity(updated, event.username, event.color, corner, now=ts, rng=rng)
    return updated


def upsert_entity(
    snapshot: ComboSnapshot,
    username: str,
    color: str | None,
    corner: Corner | str = Corner.BOTTOM_LEFT,
    *,
    now: int,
    rng: random.Random | None = None,
) -> ComboSnapshot:
    """Create or refresh the persistent entity for *username*.

    A live entity keeps its position; only count, colour and timestamp
    change. An absent or expiring entity is replaced by a fresh one at a
    newly sampled position.
    """
    existing = snapshot.entities.get(username)
    entities = dict(snapshot.entities)
    aggregate = snapshot.aggregate

    if existing is not None and not existing.is_expiring:
        entities[username] = existing.model_copy(
            update={
                "count": existing.count + 1,
                "color": color or existing.color,
                "last_update_timestamp": now,
            }
        )
    else:
        position = place(corner, rng)
        entities[username] = PersistentUserEntity(
            color=color or DEFAULT_ENTITY_COLOR,
            count=1,
            x=position.x,
            y=position.y,
            last_update_timestamp=now,
            lifecycle_state=LifecycleState.FALLING,
        )
        if existing is not None:
            # The displaced entity's contribution leaves with it.
            aggregate = aggregate.without(username, existing.count)
            _logger.debug("Recreated expiring entity for %s", username)

    return snapshot.evolve(entities=entities, aggregate=aggregate)


def remove_entity(snapshot: ComboSnapshot, username: str) -> ComboSnapshot:
    """Delete *username*'s entity and subtract its recorded count."""
    entity = snapshot.entities.get(username)
    if entity is None:
        return snapshot

    entities = dict(snapshot.entities)
    del entities[username]
    return snapshot.evolve(entities=entities, aggregate=snapshot.aggregate.without(username, entity.count))


def mark_expiring(snapshot: ComboSnapshot, username: str, now: int) -> ComboSnapshot:
    """Flag *username*'s entity as expiring; no-op when already expiring."""
    entity = snapshot.entities.get(username)
    if entity is None or entity.is_expiring:
        return snapshot

    entities = dict(snapshot.entities)
    entities[username] = entity.model_copy(
        update={
            "lifecycle_state": LifecycleState.EXPIRING,
            "expiry_start_timestamp": now,
        }
    )
    return snapshot.evolve(entities=entities)


def reset(_snapshot: ComboSnapshot | None = None) -> ComboSnapshot:
    """Return the empty snapshot."""
    return ComboSnapshot.empty()


class ComboStore:
    """Holder for the current snapshot of one channel."""

    def __init__(self, snapshot: ComboSnapshot | None = None) -> None:
        self._snapshot = snapshot if snapshot is not None else ComboSnapshot.empty()
        self._listeners: list[SnapshotListener] = []

    @property
    def snapshot(self) -> ComboSnapshot:
        return self._snapshot

    def replace(
        self,
        transition: Callable[Concatenate[ComboSnapshot, P], ComboSnapshot],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> ComboSnapshot:
        """Apply *transition* to the current snapshot and swap it in."""
        old = self._snapshot
        new = transition(old, *args, **kwargs)
        if new is old:
            return old
        self._snapshot = new
        self._notify(old, new)
        return new

    def load(self, snapshot: ComboSnapshot) -> None:
        """Install a snapshot restored from storage without notifying."""
        self._snapshot = snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, old: ComboSnapshot, new: ComboSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:  # noqa: BLE001
                _logger.exception("Snapshot listener %r failed", listener)

    def __repr__(self) -> str:
        snap = self._snapshot
        return (
            f"ComboStore(records={snap.secondary_total}, primary_total={snap.primary_total}, "
            f"entities={len(snap.entities)})"
        )
