"""Per-entity animation lifecycle.

Persistent entities move through::

    initial -> falling -> landed -> expiring -> gone
                            ^  |
                            |  v
                          jumping

Timed transitions are fixed constants; ``landed -> expiring`` is triggered
from outside (expiry sweep or a manual command). An entity recreated while
expiring restarts at ``initial`` and its in-flight burst is dropped.

:class:`EntityAnimation` is a plain deterministic object driven by explicit
timestamps. :class:`AnimationController` reconciles it with store snapshots
and, when given an event loop, arms a timer for the next deadline.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from pycombo._constants import (
    EXPLOSION_ANIMATION_MS,
    FALL_DURATION_MS,
    FALL_START_DELAY_MS,
    JUMP_DURATION_MS,
    NEW_ENTITY_GRACE_MS,
)
from pycombo.models._base import now_ms
from pycombo.models.state import ComboSnapshot

_logger = logging.getLogger(__name__)


class AnimationState(StrEnum):
    INITIAL = "initial"
    FALLING = "falling"
    LANDED = "landed"
    JUMPING = "jumping"
    EXPIRING = "expiring"
    GONE = "gone"


_TERMINAL_PHASE = frozenset({AnimationState.EXPIRING, AnimationState.GONE})


@dataclass(frozen=True)
class Transition:
    username: str
    previous: AnimationState
    state: AnimationState
    at: int


class EntityAnimation:
    """Lifecycle of one visible entity."""

    def __init__(
        self,
        username: str,
        started_at: int,
        *,
        state: AnimationState = AnimationState.INITIAL,
    ) -> None:
        self.username = username
        self._state = state
        self._started_at = started_at
        self._jump_until: int | None = None
        self._explode_until: int | None = None

    @property
    def state(self) -> AnimationState:
        return self._state

    @property
    def started_at(self) -> int:
        return self._started_at

    @property
    def next_deadline(self) -> int | None:
        """Timestamp of the next timed transition, if one is pending."""
        if self._state == AnimationState.INITIAL:
            return self._started_at + FALL_START_DELAY_MS
        if self._state == AnimationState.FALLING:
            return self._started_at + FALL_DURATION_MS
        if self._state == AnimationState.JUMPING:
            return self._jump_until
        if self._state == AnimationState.EXPIRING:
            return self._explode_until
        return None

    def _move(self, state: AnimationState, at: int) -> Transition:
        transition = Transition(username=self.username, previous=self._state, state=state, at=at)
        self._state = state
        return transition

    def advance(self, now: int) -> list[Transition]:
        """Apply every timed transition due at *now*."""
        transitions: list[Transition] = []
        while True:
            deadline = self.next_deadline
            if deadline is None or now < deadline:
                return transitions
            if self._state == AnimationState.INITIAL:
                transitions.append(self._move(AnimationState.FALLING, deadline))
            elif self._state == AnimationState.FALLING:
                transitions.append(self._move(AnimationState.LANDED, deadline))
            elif self._state == AnimationState.JUMPING:
                self._jump_until = None
                transitions.append(self._move(AnimationState.LANDED, deadline))
            elif self._state == AnimationState.EXPIRING:
                self._explode_until = None
                transitions.append(self._move(AnimationState.GONE, deadline))

    def pulse(self, now: int) -> list[Transition]:
        """Short jump on a repeat event; only a landed entity jumps."""
        if self._state != AnimationState.LANDED:
            return []
        self._jump_until = now + JUMP_DURATION_MS
        return [self._move(AnimationState.JUMPING, now)]

    def expire(self, now: int) -> list[Transition]:
        if self._state in _TERMINAL_PHASE:
            return []
        self._jump_until = None
        self._explode_until = now + EXPLOSION_ANIMATION_MS
        return [self._move(AnimationState.EXPIRING, now)]

    def restart(self, now: int) -> list[Transition]:
        """Start the fall-in again after the entity was recreated."""
        if self._state not in _TERMINAL_PHASE:
            return []
        self._started_at = now
        self._jump_until = None
        self._explode_until = None
        return [self._move(AnimationState.INITIAL, now)]

    def __repr__(self) -> str:
        return f"EntityAnimation({self.username!r}, state={self._state.value})"


TransitionCallback = Callable[[Transition], None]
GoneCallback = Callable[[str], None]


class AnimationController:
    """Keeps one :class:`EntityAnimation` per entity in the latest snapshot."""

    def __init__(
        self,
        *,
        clock: Callable[[], int] = now_ms,
        on_transition: TransitionCallback | None = None,
        on_gone: GoneCallback | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._clock = clock
        self._on_transition = on_transition
        self._on_gone = on_gone
        self._loop = loop
        self._animations: dict[str, EntityAnimation] = {}
        self._counts: dict[str, int] = {}
        self._gone_reported: set[str] = set()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def animations(self) -> Mapping[str, EntityAnimation]:
        return dict(self._animations)

    def state_of(self, username: str) -> AnimationState | None:
        animation = self._animations.get(username)
        return animation.state if animation is not None else None

    def attach(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Bind (or unbind, with ``None``) the loop used for deadline timers."""
        self._cancel_timer()
        self._loop = loop
        self._reschedule()

    def sync(self, snapshot: ComboSnapshot) -> list[Transition]:
        """Reconcile animations with *snapshot* and apply due transitions."""
        now = self._clock()
        transitions: list[Transition] = []

        for username, entity in snapshot.entities.items():
            animation = self._animations.get(username)
            previous_count = self._counts.get(username)
            if animation is None:
                if entity.is_expiring:
                    # Restored mid-expiry: no fall-in, go straight to the burst.
                    animation = EntityAnimation(username, now, state=AnimationState.LANDED)
                    transitions.extend(animation.expire(now))
                else:
                    animation = EntityAnimation(username, now)
                self._animations[username] = animation
            elif entity.is_expiring:
                transitions.extend(animation.expire(now))
            elif animation.state in _TERMINAL_PHASE:
                self._gone_reported.discard(username)
                transitions.extend(animation.restart(now))
            elif (
                previous_count is not None
                and entity.count > previous_count
                and now - animation.started_at >= NEW_ENTITY_GRACE_MS
            ):
                transitions.extend(animation.pulse(now))
            self._counts[username] = entity.count

        for username in [name for name in self._animations if name not in snapshot.entities]:
            del self._animations[username]
            self._counts.pop(username, None)
            self._gone_reported.discard(username)

        transitions.extend(self._advance_all(now))
        self._emit(transitions)
        self._reschedule()
        return transitions

    def advance(self, now: int | None = None) -> list[Transition]:
        """Apply transitions due at *now* (defaults to the clock)."""
        transitions = self._advance_all(self._clock() if now is None else now)
        self._emit(transitions)
        self._reschedule()
        return transitions

    def clear(self) -> None:
        self._cancel_timer()
        self._animations.clear()
        self._counts.clear()
        self._gone_reported.clear()

    def close(self) -> None:
        self._cancel_timer()
        self._loop = None

    def _advance_all(self, now: int) -> list[Transition]:
        transitions: list[Transition] = []
        for animation in list(self._animations.values()):
            transitions.extend(animation.advance(now))
        return transitions

    def _emit(self, transitions: list[Transition]) -> None:
        for transition in transitions:
            if self._on_transition is not None:
                try:
                    self._on_transition(transition)
                except Exception:  # noqa: BLE001
                    _logger.exception("Animation transition callback failed")
        for transition in transitions:
            if transition.state != AnimationState.GONE or transition.username in self._gone_reported:
                continue
            self._gone_reported.add(transition.username)
            if self._on_gone is not None:
                try:
                    self._on_gone(transition.username)
                except Exception:  # noqa: BLE001
                    _logger.exception("Animation gone callback failed for %s", transition.username)

    def _next_deadline(self) -> int | None:
        deadlines = [d for a in self._animations.values() if (d := a.next_deadline) is not None]
        return min(deadlines) if deadlines else None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reschedule(self) -> None:
        self._cancel_timer()
        if self._loop is None or self._loop.is_closed():
            return
        deadline = self._next_deadline()
        if deadline is None:
            return
        delay = max(0.0, (deadline - self._clock()) / 1000)
        self._timer = self._loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.advance()
