"""Typed models for combo events and per-channel state."""

from pycombo.models.event import Category, ComboEvent, normalize_color, parse_event, require_event
from pycombo.models.state import (
    AggregateCounters,
    ComboSnapshot,
    LifecycleState,
    PersistentUserEntity,
    ProcessedIds,
    TimestampedRecord,
)

__all__ = [
    "AggregateCounters",
    "Category",
    "ComboEvent",
    "ComboSnapshot",
    "LifecycleState",
    "PersistentUserEntity",
    "ProcessedIds",
    "TimestampedRecord",
    "normalize_color",
    "parse_event",
    "require_event",
]
