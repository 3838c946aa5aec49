"""Renderers: the only side-effecting consumers of engine output."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Protocol

from pycombo.animation import Transition
from pycombo.registry import ChannelRegistry
from pycombo.simulation import BodyUpdate

_logger = logging.getLogger(__name__)


class Renderer(Protocol):
    def render_bodies(self, channel: str, updates: list[BodyUpdate]) -> None: ...

    def render_transition(self, channel: str, transition: Transition) -> None: ...

    def render_state(self, channel: str, state: dict[str, Any]) -> None: ...


def body_message(update: BodyUpdate) -> dict[str, Any]:
    payload = dataclasses.asdict(update)
    payload["kind"] = update.kind.value
    return payload


def transition_message(transition: Transition) -> dict[str, Any]:
    return {
        "username": transition.username,
        "previous": transition.previous.value,
        "state": transition.state.value,
        "at": transition.at,
    }


class NullRenderer:
    def render_bodies(self, channel: str, updates: list[BodyUpdate]) -> None:
        return None

    def render_transition(self, channel: str, transition: Transition) -> None:
        return None

    def render_state(self, channel: str, state: dict[str, Any]) -> None:
        return None


class LoggingRenderer:
    """Writes every update to a DEBUG log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def render_bodies(self, channel: str, updates: list[BodyUpdate]) -> None:
        for update in updates:
            self._logger.debug("[%s] body %s", channel, body_message(update))

    def render_transition(self, channel: str, transition: Transition) -> None:
        self._logger.debug("[%s] %s: %s -> %s", channel, transition.username, transition.previous, transition.state)

    def render_state(self, channel: str, state: dict[str, Any]) -> None:
        self._logger.debug("[%s] state %s", channel, state)


class BroadcastRenderer:
    """Serializes updates and fans them out through a :class:`ChannelRegistry`."""

    def __init__(self, registry: ChannelRegistry) -> None:
        self._registry = registry

    def render_bodies(self, channel: str, updates: list[BodyUpdate]) -> None:
        if not updates:
            return
        self._registry.broadcast(channel, {"type": "bodies", "bodies": [body_message(u) for u in updates]})

    def render_transition(self, channel: str, transition: Transition) -> None:
        self._registry.broadcast(channel, {"type": "transition", **transition_message(transition)})

    def render_state(self, channel: str, state: dict[str, Any]) -> None:
        self._registry.broadcast(channel, {"type": "state", "state": state})


class CompositeRenderer:
    def __init__(self, *renderers: Renderer) -> None:
        self._renderers = renderers

    def render_bodies(self, channel: str, updates: list[BodyUpdate]) -> None:
        for renderer in self._renderers:
            renderer.render_bodies(channel, updates)

    def render_transition(self, channel: str, transition: Transition) -> None:
        for renderer in self._renderers:
            renderer.render_transition(channel, transition)

    def render_state(self, channel: str, state: dict[str, Any]) -> None:
        for renderer in self._renderers:
            renderer.render_state(channel, state)
