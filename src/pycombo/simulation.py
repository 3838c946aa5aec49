"""Spawn/fall simulation for ephemeral bodies.

The simulator owns its bodies and nothing else. Each :meth:`step` returns
:class:`BodyUpdate` records describing what moved; painting them is the
renderer's job.

Two kinds of bodies exist:

* ``settle`` bodies fall under constant gravity and are pinned the moment
  they reach their sampled settle depth in the lower half of the field.
* ``pass`` bodies cross the field at constant speed and are dropped once
  they leave it.
"""

from __future__ import annotations

import dataclasses
import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from pycombo.models.event import normalize_color

_logger = logging.getLogger(__name__)

BASE_SIZE = 80.0
HEART_BASE_SIZE = 50.0
MIN_SCALE = 1.5
MAX_SCALE = 5.0
SAFE_ZONE_WIDTH_PERCENT = 0.4
EDGE_PADDING = 60.0

# Collision footprint as a fraction of the visual size.
HORIZONTAL_COLLISION = 0.2
VERTICAL_COLLISION = 0.5

GRAVITY = 1000.0  # px/s²
SPAWN_JITTER = 100.0  # extra px above the field a body may start at

PASS_FALL_DURATION_MIN_MS = 3000
PASS_FALL_DURATION_MAX_MS = 5000


class SpawnKind(StrEnum):
    SETTLE = "settle"
    PASS = "pass"


@dataclass(frozen=True)
class FieldSize:
    width: float
    height: float


@dataclass(frozen=True)
class SpawnRequest:
    id: int
    color: str | None = None
    kind: SpawnKind = SpawnKind.SETTLE


@dataclass(frozen=True)
class FallingBody:
    id: int
    kind: SpawnKind
    color: str | None
    hue: float
    size: float
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    target_y: float | None = None
    settled: bool = False

    @property
    def collision_width(self) -> float:
        return self.size * HORIZONTAL_COLLISION

    @property
    def collision_height(self) -> float:
        return self.size * VERTICAL_COLLISION


@dataclass(frozen=True)
class BodyUpdate:
    """Position/state change of one body, consumed by renderers."""

    id: int
    kind: SpawnKind
    x: float
    y: float
    size: float
    hue: float
    settled: bool
    removed: bool = False

    @classmethod
    def of(cls, body: FallingBody, *, removed: bool = False) -> BodyUpdate:
        return cls(
            id=body.id,
            kind=body.kind,
            x=body.x,
            y=body.y,
            size=body.size,
            hue=body.hue,
            settled=body.settled,
            removed=removed,
        )


def hex_to_hue(color: str) -> float:
    """Hue in degrees (0-360) of a ``#RRGGBB`` colour; grey maps to 0."""
    value = color.lstrip("#")
    r = int(value[0:2], 16) / 255
    g = int(value[2:4], 16) / 255
    b = int(value[4:6], 16) / 255
    high = max(r, g, b)
    low = min(r, g, b)
    if high == low:
        return 0.0
    d = high - low
    if high == r:
        hue = ((g - b) / d + (6 if g < b else 0)) * 60
    elif high == g:
        hue = ((b - r) / d + 2) * 60
    else:
        hue = ((r - g) / d + 4) * 60
    return hue


def spawn_x(field: FieldSize, size: float, rng: random.Random) -> float:
    """Sample a horizontal spawn position outside the centred safe zone.

    When the padded space on both sides of the safe zone collapses, the
    body spawns flush against either edge with equal probability.
    """
    safe_start = field.width * (0.5 - SAFE_ZONE_WIDTH_PERCENT / 2)
    safe_end = field.width * (0.5 + SAFE_ZONE_WIDTH_PERCENT / 2)
    left_edge = EDGE_PADDING + size / 2
    right_edge = field.width - EDGE_PADDING - size / 2
    left_width = safe_start - left_edge
    right_width = right_edge - safe_end
    total = left_width + right_width

    if total <= 0:
        return left_edge if rng.random() < 0.5 else right_edge

    pos = rng.random() * total
    if pos < left_width:
        return left_edge + pos
    return safe_end + (pos - left_width)


def _overlaps(a: FallingBody, b: FallingBody) -> bool:
    return (
        abs(a.x - b.x) < (a.collision_width + b.collision_width) / 2
        and abs(a.y - b.y) < (a.collision_height + b.collision_height) / 2
    )


def advance_body(body: FallingBody, dt: float, *, gravity: float = GRAVITY) -> FallingBody:
    """Integrate one body over *dt* seconds, pinning it at its settle depth."""
    if body.settled:
        return body
    if body.kind == SpawnKind.PASS:
        return dataclasses.replace(body, y=body.y + body.vy * dt)

    vy = body.vy + gravity * dt
    y = body.y + vy * dt
    if body.target_y is not None and y >= body.target_y:
        return dataclasses.replace(body, y=body.target_y, vx=0.0, vy=0.0, settled=True)
    return dataclasses.replace(body, y=y, vy=vy)


class SpawnFallSimulator:
    """Deterministic (given *rng*) simulator for ephemeral falling bodies."""

    def __init__(
        self,
        field: FieldSize,
        *,
        size_multiplier: float = 1.0,
        rng: random.Random | None = None,
        gravity: float = GRAVITY,
    ) -> None:
        self._field = field
        self._size_multiplier = size_multiplier
        self._rng = rng or random.Random()
        self._gravity = gravity
        self._bodies: dict[int, FallingBody] = {}
        self._processed_ids: set[int] = set()

    @property
    def field(self) -> FieldSize:
        return self._field

    @property
    def bodies(self) -> tuple[FallingBody, ...]:
        return tuple(self._bodies.values())

    def _sample_scale(self) -> float:
        return (MIN_SCALE + self._rng.random() * (MAX_SCALE - MIN_SCALE)) * self._size_multiplier

    def _hue(self, color: str | None) -> float:
        normalized = normalize_color(color)
        if normalized is None:
            return self._rng.random() * 360
        return hex_to_hue(normalized)

    def spawn(self, request: SpawnRequest) -> FallingBody | None:
        """Create a body for *request*; repeated ids are ignored."""
        if request.id in self._processed_ids:
            return None
        self._processed_ids.add(request.id)

        if request.kind == SpawnKind.PASS:
            body = self._spawn_pass(request)
        else:
            body = self._spawn_settle(request)
        self._bodies[body.id] = body
        _logger.debug("Spawned %s body id=%s x=%.1f size=%.1f", body.kind, body.id, body.x, body.size)
        return body

    def spawn_many(self, requests: Iterable[SpawnRequest]) -> list[FallingBody]:
        spawned: list[FallingBody] = []
        for request in requests:
            body = self.spawn(request)
            if body is not None:
                spawned.append(body)
        return spawned

    def _spawn_settle(self, request: SpawnRequest) -> FallingBody:
        height = self._field.height
        size = BASE_SIZE * self._sample_scale()
        hue = self._hue(request.color)
        target_y = height * 0.5 + self._rng.random() * height * 0.5
        x = spawn_x(self._field, size, self._rng)
        y = -size - self._rng.random() * SPAWN_JITTER
        return FallingBody(
            id=request.id,
            kind=SpawnKind.SETTLE,
            color=request.color,
            hue=hue,
            size=size,
            x=x,
            y=y,
            target_y=target_y,
        )

    def _spawn_pass(self, request: SpawnRequest) -> FallingBody:
        size = HEART_BASE_SIZE * self._sample_scale()
        hue = self._hue(request.color)
        span = max(self._field.width - size, 0.0)
        x = size / 2 + self._rng.random() * span
        duration_ms = PASS_FALL_DURATION_MIN_MS + self._rng.random() * (
            PASS_FALL_DURATION_MAX_MS - PASS_FALL_DURATION_MIN_MS
        )
        distance = self._field.height + 2 * size
        return FallingBody(
            id=request.id,
            kind=SpawnKind.PASS,
            color=request.color,
            hue=hue,
            size=size,
            x=x,
            y=-size,
            vy=distance / (duration_ms / 1000),
        )

    def _wall_bounds(self, body: FallingBody) -> tuple[float, float]:
        low = EDGE_PADDING + body.collision_width / 2
        high = self._field.width - EDGE_PADDING - body.collision_width / 2
        if low > high:
            middle = self._field.width / 2
            return middle, middle
        return low, high

    def _avoid_collisions(self, body: FallingBody) -> FallingBody:
        """Shift *body* sideways out of any overlapping settle body."""
        low, high = self._wall_bounds(body)
        x = body.x
        for other in self._bodies.values():
            if other.id == body.id or other.kind != SpawnKind.SETTLE:
                continue
            candidate = dataclasses.replace(body, x=x)
            if not _overlaps(candidate, other):
                continue
            needed = (candidate.collision_width + other.collision_width) / 2 - abs(x - other.x)
            if x != other.x:
                direction = 1.0 if x > other.x else -1.0
            else:
                direction = -1.0 if x < self._field.width / 2 else 1.0
            x = min(high, max(low, x + direction * needed))
        if x == body.x:
            return body
        return dataclasses.replace(body, x=x)

    def step(self, dt: float) -> list[BodyUpdate]:
        """Advance every body by *dt* seconds and report what changed."""
        updates: list[BodyUpdate] = []
        for body_id in list(self._bodies):
            body = self._bodies[body_id]
            if body.settled:
                continue

            moved = advance_body(body, dt, gravity=self._gravity)
            if moved.kind == SpawnKind.PASS:
                if moved.y > self._field.height + moved.size:
                    del self._bodies[body_id]
                    updates.append(BodyUpdate.of(moved, removed=True))
                    continue
            elif not moved.settled:
                moved = self._avoid_collisions(moved)

            self._bodies[body_id] = moved
            updates.append(BodyUpdate.of(moved))
        return updates

    def clear(self) -> list[BodyUpdate]:
        """Drop every body; returns removal updates for the renderer."""
        removed = [BodyUpdate.of(body, removed=True) for body in self._bodies.values()]
        self._bodies.clear()
        self._processed_ids.clear()
        return removed
