"""Snapshot models owned by the aggregation store."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import Field, field_validator

from pycombo._constants import PROCESSED_ID_WINDOW
from pycombo.models._base import ComboBaseModel


def _frozen(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping))


def _empty_mapping() -> Mapping[str, Any]:
    return MappingProxyType({})


class LifecycleState(StrEnum):
    INITIAL = "initial"
    FALLING = "falling"
    LANDED = "landed"
    JUMPING = "jumping"
    EXPIRING = "expiring"
    GONE = "gone"


class AggregateCounters(ComboBaseModel):
    """Per-channel counter for one category.

    ``total`` always equals ``sum(users.values())``; build instances through
    :meth:`from_users`, :meth:`increment` and :meth:`without` to keep it so.
    """

    total: int = 0
    users: Mapping[str, int] = Field(default_factory=_empty_mapping)

    @field_validator("users")
    @classmethod
    def _read_only_users(cls, value: Mapping[str, int]) -> Mapping[str, int]:
        return _frozen(value)

    @classmethod
    def from_users(cls, users: Mapping[str, int]) -> AggregateCounters:
        cleaned = {name: count for name, count in users.items() if count > 0}
        return cls(total=sum(cleaned.values()), users=cleaned)

    def increment(self, username: str, by: int = 1) -> AggregateCounters:
        users = dict(self.users)
        users[username] = users.get(username, 0) + by
        return AggregateCounters.from_users(users)

    def without(self, username: str, count: int) -> AggregateCounters:
        """Subtract *count* from *username*, dropping the user at zero."""
        if username not in self.users or count <= 0:
            return self
        users = dict(self.users)
        remaining = users[username] - count
        if remaining > 0:
            users[username] = remaining
        else:
            del users[username]
        return AggregateCounters.from_users(users)


class PersistentUserEntity(ComboBaseModel):
    """One visual entity per user for the primary category."""

    color: str
    count: int = 1
    x: float
    """Horizontal position, percent of field width."""

    y: float
    """Vertical position, percent of field height (lower half)."""

    last_update_timestamp: int
    lifecycle_state: LifecycleState = LifecycleState.FALLING
    expiry_start_timestamp: int | None = None

    @property
    def is_expiring(self) -> bool:
        return self.lifecycle_state == LifecycleState.EXPIRING


class TimestampedRecord(ComboBaseModel):
    """One secondary-category event; counted until its expiry window passes."""

    username: str
    timestamp: int


class ProcessedIds(ComboBaseModel):
    """Producer event identifiers already applied, oldest first.

    Only the most recent *limit* distinct identifiers are remembered; a
    replay older than that window is no longer recognized.
    """

    ids: frozenset[int] = frozenset()
    order: tuple[int, ...] = ()
    limit: int = PROCESSED_ID_WINDOW

    def __contains__(self, event_id: object) -> bool:
        return event_id in self.ids

    def __len__(self) -> int:
        return len(self.order)

    def add(self, event_id: int) -> ProcessedIds:
        if event_id in self.ids:
            return self
        order = (*self.order, event_id)
        ids = self.ids | {event_id}
        overflow = len(order) - self.limit
        if overflow > 0:
            ids = ids.difference(order[:overflow])
            order = order[overflow:]
        return ProcessedIds.model_construct(ids=ids, order=order, limit=self.limit)


class ComboSnapshot(ComboBaseModel):
    """Immutable per-channel state.

    ``entities`` and ``aggregate.users`` are read-only mappings; derive new
    snapshots through :meth:`evolve`. ``processed_ids`` covers the current
    session only and is never persisted.
    """

    records: tuple[TimestampedRecord, ...] = ()
    aggregate: AggregateCounters = Field(default_factory=AggregateCounters)
    entities: Mapping[str, PersistentUserEntity] = Field(default_factory=_empty_mapping)
    processed_ids: ProcessedIds = Field(default_factory=ProcessedIds)

    @field_validator("entities")
    @classmethod
    def _read_only_entities(cls, value: Mapping[str, PersistentUserEntity]) -> Mapping[str, PersistentUserEntity]:
        return _frozen(value)

    @classmethod
    def empty(cls) -> ComboSnapshot:
        return cls()

    def evolve(self, **changes: Any) -> ComboSnapshot:
        """Copy with *changes* applied; a replaced ``entities`` stays read-only."""
        if "entities" in changes:
            changes["entities"] = _frozen(changes["entities"])
        return self.model_copy(update=changes)

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.aggregate.users and not self.entities

    @property
    def secondary_total(self) -> int:
        return len(self.records)

    @property
    def secondary_by_user(self) -> dict[str, int]:
        return dict(Counter(record.username for record in self.records))

    @property
    def primary_total(self) -> int:
        return self.aggregate.total

    @property
    def primary_by_user(self) -> dict[str, int]:
        return dict(self.aggregate.users)
