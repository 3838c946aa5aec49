"""aiohttp control and streaming surface over :class:`ComboOverlay`.

Routes (``{channel}`` is case-insensitive):

- ``GET    /api/{channel}/state``               current snapshot + totals
- ``POST   /api/{channel}/events``              ingest one combo event
- ``POST   /api/{channel}/clear``               clear all state
- ``POST   /api/{channel}/stream-online``       clear on stream start
- ``POST   /api/{channel}/expire/{username}``   force an entity to expire
- ``DELETE /api/{channel}/entities/{username}`` remove an entity
- ``GET    /api/{channel}/stream``              server-sent events
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from aiohttp import web

from pycombo.config import OverlayConfig
from pycombo.models.event import parse_event
from pycombo.overlay import ComboOverlay
from pycombo.registry import ChannelRegistry
from pycombo.sequence import SpawnSequence
from pycombo.state.persistence import StateStorage

_logger = logging.getLogger(__name__)

PING_INTERVAL_S = 30.0


class OverlayHub:
    """Creates and starts one :class:`ComboOverlay` per channel on demand.

    Every overlay shares the hub's registry and identifier sequence.
    """

    def __init__(
        self,
        config: OverlayConfig | None = None,
        *,
        registry: ChannelRegistry | None = None,
        storage: StateStorage | None = None,
        sequence: SpawnSequence | None = None,
    ) -> None:
        self._config = config or OverlayConfig()
        self.registry = registry or ChannelRegistry()
        self._storage = storage
        self._sequence = sequence or SpawnSequence()
        self._overlays: dict[str, ComboOverlay] = {}
        self._lock = asyncio.Lock()

    @property
    def channels(self) -> list[str]:
        return sorted(self._overlays)

    async def get(self, channel: str) -> ComboOverlay:
        key = channel.strip().lower()
        overlay = self._overlays.get(key)
        if overlay is not None:
            return overlay
        async with self._lock:
            overlay = self._overlays.get(key)
            if overlay is None:
                overlay = ComboOverlay(
                    key,
                    self._config,
                    storage=self._storage,
                    registry=self.registry,
                    sequence=self._sequence,
                )
                await overlay.start()
                self._overlays[key] = overlay
        return overlay

    async def close(self) -> None:
        overlays = list(self._overlays.values())
        self._overlays.clear()
        for overlay in overlays:
            await overlay.stop()
        self.registry.close_all()


HUB_KEY = web.AppKey("pycombo_hub", OverlayHub)


def _sse(message: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(message)}\n\n".encode()


def _hub(request: web.Request) -> OverlayHub:
    return request.app[HUB_KEY]


async def _overlay(request: web.Request) -> ComboOverlay:
    return await _hub(request).get(request.match_info["channel"])


async def get_state(request: web.Request) -> web.Response:
    overlay = await _overlay(request)
    return web.json_response(overlay.state_payload())


async def post_event(request: web.Request) -> web.Response:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "Invalid JSON"}, status=400)
    if not isinstance(payload, dict):
        return web.json_response({"error": "Event must be a JSON object"}, status=400)

    event = parse_event(payload)
    if event is None:
        return web.json_response({"accepted": False}, status=202)

    overlay = await _overlay(request)
    changed = overlay.add_event(event)
    return web.json_response({"accepted": changed})


async def post_clear(request: web.Request) -> web.Response:
    overlay = await _overlay(request)
    overlay.clear_all()
    return web.json_response({"ok": True})


async def post_stream_online(request: web.Request) -> web.Response:
    overlay = await _overlay(request)
    overlay.stream_online()
    return web.json_response({"received": True})


async def post_expire(request: web.Request) -> web.Response:
    overlay = await _overlay(request)
    changed = overlay.force_expire(request.match_info["username"])
    return web.json_response({"expiring": changed})


async def delete_entity(request: web.Request) -> web.Response:
    overlay = await _overlay(request)
    changed = overlay.remove_entity(request.match_info["username"])
    return web.json_response({"removed": changed})


async def get_stream(request: web.Request) -> web.StreamResponse:
    overlay = await _overlay(request)
    registry = _hub(request).registry

    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
    subscription = registry.open(overlay.channel)
    try:
        await response.prepare(request)
        await response.write(_sse({"type": "connected", "channel": overlay.channel}))
        await response.write(_sse({"type": "state", "state": overlay.state_payload()}))
        while True:
            try:
                message = await asyncio.wait_for(subscription.get(), timeout=PING_INTERVAL_S)
            except TimeoutError:
                await response.write(b": ping\n\n")
                continue
            if message is None:
                break
            await response.write(_sse(message))
    except ConnectionResetError:
        _logger.debug("Stream client for %s went away", overlay.channel)
    finally:
        registry.close(subscription)
    return response


async def _close_hub(app: web.Application) -> None:
    await app[HUB_KEY].close()


def create_app(hub: OverlayHub | None = None) -> web.Application:
    app = web.Application()
    app[HUB_KEY] = hub or OverlayHub()
    app.add_routes(
        [
            web.get("/api/{channel}/state", get_state),
            web.post("/api/{channel}/events", post_event),
            web.post("/api/{channel}/clear", post_clear),
            web.post("/api/{channel}/stream-online", post_stream_online),
            web.post("/api/{channel}/expire/{username}", post_expire),
            web.delete("/api/{channel}/entities/{username}", delete_entity),
            web.get("/api/{channel}/stream", get_stream),
        ]
    )
    app.on_cleanup.append(_close_hub)
    return app
