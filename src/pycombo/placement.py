"""Placement of persistent user entities inside the visual field.

Coordinates are field-relative percentages. Entities land in the lower half
of the field and stay clear of the corner occupied by the counter display.
This is a static reservation heuristic: entities may overlap each other.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

DEFAULT_MIN_X = 15.0
DEFAULT_MAX_X = 85.0
DEFAULT_MIN_Y = 55.0
DEFAULT_MAX_Y = 85.0

_NARROWED_MIN_X = 35.0
_NARROWED_MAX_X = 65.0
_NARROWED_MAX_Y = 80.0


class Corner(StrEnum):
    BOTTOM_LEFT = "bl"
    TOP_LEFT = "tl"
    BOTTOM_RIGHT = "br"
    TOP_RIGHT = "tr"

    @classmethod
    def parse(cls, value: Any) -> Corner:
        """Parse a corner identifier, falling back to bottom-left."""
        if isinstance(value, Corner):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.BOTTOM_LEFT

    @property
    def is_left(self) -> bool:
        return self in (Corner.BOTTOM_LEFT, Corner.TOP_LEFT)

    @property
    def is_bottom(self) -> bool:
        return self in (Corner.BOTTOM_LEFT, Corner.BOTTOM_RIGHT)


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class PlacementBounds:
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def contains(self, position: Position) -> bool:
        return self.min_x <= position.x <= self.max_x and self.min_y <= position.y <= self.max_y


def placement_bounds(corner: Corner | str) -> PlacementBounds:
    """Return the sampling rectangle for *corner*.

    The half of the x-range next to the reserved corner is narrowed, and the
    upper y bound shrinks when the corner sits in the bottom half.
    """
    resolved = Corner.parse(corner)
    min_x, max_x = DEFAULT_MIN_X, DEFAULT_MAX_X
    max_y = DEFAULT_MAX_Y

    if resolved.is_left:
        min_x = _NARROWED_MIN_X
    else:
        max_x = _NARROWED_MAX_X
    if resolved.is_bottom:
        max_y = _NARROWED_MAX_Y

    return PlacementBounds(min_x=min_x, max_x=max_x, min_y=DEFAULT_MIN_Y, max_y=max_y)


def place(corner: Corner | str, rng: random.Random | None = None) -> Position:
    """Sample a position uniformly inside :func:`placement_bounds`."""
    source = rng or random
    bounds = placement_bounds(corner)
    x = bounds.min_x + source.random() * (bounds.max_x - bounds.min_x)
    y = bounds.min_y + source.random() * (bounds.max_y - bounds.min_y)
    return Position(x=x, y=y)
