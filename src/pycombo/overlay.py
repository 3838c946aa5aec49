"""High-level per-channel overlay engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Callable, Mapping
from typing import Any

from pycombo.animation import AnimationController, Transition
from pycombo.config import OverlayConfig
from pycombo.exceptions import ComboStorageError
from pycombo.models._base import now_ms
from pycombo.models.event import Category, ComboEvent, parse_event
from pycombo.models.state import ComboSnapshot
from pycombo.registry import ChannelRegistry
from pycombo.render import BroadcastRenderer, NullRenderer, Renderer
from pycombo.sequence import SpawnSequence
from pycombo.simulation import BodyUpdate, FieldSize, SpawnFallSimulator, SpawnKind, SpawnRequest
from pycombo.state import store as _store
from pycombo.state.expiry import ExpiryScheduler
from pycombo.state.persistence import (
    JsonFileStorage,
    MemoryStorage,
    StateStorage,
    StateWriter,
    dump_snapshot,
    load_snapshot,
    storage_key,
)

_logger = logging.getLogger(__name__)


class ComboOverlay:
    """Aggregation, expiry, placement, simulation and animation for one channel.

    Usage::

        async with ComboOverlay("somechannel", OverlayConfig.from_env()) as overlay:
            overlay.add_event({"type": "primary", "username": "alice", "color": "#FF0000"})
    """

    def __init__(
        self,
        channel: str,
        config: OverlayConfig | None = None,
        *,
        storage: StateStorage | None = None,
        registry: ChannelRegistry | None = None,
        renderer: Renderer | None = None,
        sequence: SpawnSequence | None = None,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        channel = channel.strip().lower()
        if not channel:
            raise ValueError("channel must be non-empty")
        self._channel = channel
        self._config = config or OverlayConfig()
        if storage is None:
            storage_dir = self._config.storage_dir
            storage = JsonFileStorage(storage_dir) if storage_dir is not None else MemoryStorage()
        self._storage = storage
        self._writer = StateWriter(storage, storage_key(channel))
        self._registry = registry
        if renderer is None:
            renderer = BroadcastRenderer(registry) if registry is not None else NullRenderer()
        self._renderer = renderer
        self._sequence = sequence or SpawnSequence()
        self._clock = clock
        self._rng = rng or random.Random()

        self._store = _store.ComboStore()
        self._scheduler = ExpiryScheduler(
            self._store,
            interval=self._config.sweep_interval,
            clock=clock,
            entity_expiry_ms=int(self._config.entity_expiry * 1000),
            record_expiry_ms=int(self._config.record_expiry * 1000),
        )
        self._simulator = SpawnFallSimulator(
            FieldSize(self._config.field_width, self._config.field_height),
            size_multiplier=self._config.size_multiplier,
            rng=self._rng,
        )
        self._animations = AnimationController(
            clock=clock,
            on_transition=self._on_transition,
            on_gone=self.remove_entity,
        )
        self._loaded = False
        self._frame_task: asyncio.Task[None] | None = None
        self._store.subscribe(self._on_snapshot)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ComboOverlay:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        if not self._loaded:
            self.load()
        self._scheduler.start()
        if self._config.persistent_mode:
            self._animations.attach(loop)
        if self._needs_frames and self._frame_task is None:
            self._frame_task = loop.create_task(self._run_frames(), name=f"pycombo-frames-{self._channel}")
        _logger.info(
            "Overlay started channel=%s persistent_mode=%s corner=%s",
            self._channel,
            self._config.persistent_mode,
            self._config.corner,
        )

    async def stop(self) -> None:
        await self._scheduler.stop()
        task = self._frame_task
        self._frame_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._animations.close()
        await self._writer.flush()
        _logger.info("Overlay stopped channel=%s", self._channel)

    async def flush(self) -> None:
        """Wait for pending state writes."""
        await self._writer.flush()

    @property
    def _needs_frames(self) -> bool:
        return not self._config.persistent_mode or self._config.fall_effect_enabled

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def config(self) -> OverlayConfig:
        return self._config

    @property
    def snapshot(self) -> ComboSnapshot:
        return self._store.snapshot

    @property
    def store(self) -> _store.ComboStore:
        return self._store

    @property
    def scheduler(self) -> ExpiryScheduler:
        return self._scheduler

    @property
    def simulator(self) -> SpawnFallSimulator:
        return self._simulator

    @property
    def animations(self) -> AnimationController:
        return self._animations

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def storage_key(self) -> str:
        return storage_key(self._channel)

    @property
    def secondary_total(self) -> int:
        return self._store.snapshot.secondary_total

    @property
    def primary_total(self) -> int:
        return self._store.snapshot.primary_total

    def leaderboard(self, category: Category | str, limit: int = 10) -> list[tuple[str, int]]:
        """Users sorted by count, highest first."""
        snapshot = self._store.snapshot
        if Category(category) == Category.PRIMARY:
            counts = snapshot.primary_by_user
        else:
            counts = snapshot.secondary_by_user
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def state_payload(self) -> dict[str, Any]:
        snapshot = self._store.snapshot
        payload = dump_snapshot(snapshot)
        payload["totals"] = {
            Category.PRIMARY.value: snapshot.primary_total,
            Category.SECONDARY.value: snapshot.secondary_total,
        }
        return payload

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> ComboSnapshot:
        """Restore the persisted snapshot for this channel."""
        try:
            payload = self._storage.load(self.storage_key)
        except ComboStorageError as exc:
            _logger.warning("Failed to load combo state for %s: %s", self._channel, exc)
            payload = None

        snapshot = load_snapshot(payload)
        self._store.load(snapshot)
        self._loaded = True
        _logger.info(
            "Loaded combo state channel=%s records=%d primary_total=%d entities=%d",
            self._channel,
            snapshot.secondary_total,
            snapshot.primary_total,
            len(snapshot.entities),
        )

        if self._config.persistent_mode:
            self._animations.sync(snapshot)
        elif snapshot.primary_total > 0:
            # Colours are not persisted in ephemeral mode; restored bodies get random hues.
            requests = [SpawnRequest(id=self._sequence.next()) for _ in range(snapshot.primary_total)]
            spawned = self._simulator.spawn_many(requests)
            self._renderer.render_bodies(self._channel, [BodyUpdate.of(body) for body in spawned])
        return snapshot

    def _persist(self, snapshot: ComboSnapshot) -> None:
        self._writer.save(dump_snapshot(snapshot))

    def _on_snapshot(self, _old: ComboSnapshot, new: ComboSnapshot) -> None:
        if self._loaded:
            self._persist(new)
        if self._config.persistent_mode:
            self._animations.sync(new)
        self._renderer.render_state(self._channel, self.state_payload())

    def _on_transition(self, transition: Transition) -> None:
        self._renderer.render_transition(self._channel, transition)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_event(self, payload: ComboEvent | Mapping[str, Any]) -> bool:
        """Ingest one combo event; returns whether state changed."""
        event = parse_event(payload)
        if event is None:
            return False

        before = self._store.snapshot
        after = self._store.replace(
            _store.add_event,
            event,
            persistent_mode=self._config.persistent_mode,
            corner=self._config.corner,
            now=self._clock(),
            rng=self._rng,
        )
        if after is before:
            return False

        _logger.debug("Combo %s from %s id=%s", event.type, event.username, event.id)
        if event.type == Category.PRIMARY and not self._config.persistent_mode:
            self._spawn(SpawnRequest(id=self._sequence.next(), color=event.color, kind=SpawnKind.SETTLE))
        elif event.type == Category.SECONDARY and self._config.fall_effect_enabled:
            self._spawn(SpawnRequest(id=self._sequence.next(), color=event.color, kind=SpawnKind.PASS))
        return True

    def _spawn(self, request: SpawnRequest) -> None:
        body = self._simulator.spawn(request)
        if body is not None:
            self._renderer.render_bodies(self._channel, [BodyUpdate.of(body)])

    def force_expire(self, username: str) -> bool:
        """Start the expiry of *username*'s entity immediately."""
        before = self._store.snapshot
        after = self._store.replace(_store.mark_expiring, username.strip().lower(), self._clock())
        return after is not before

    def remove_entity(self, username: str) -> bool:
        before = self._store.snapshot
        after = self._store.replace(_store.remove_entity, username.strip().lower())
        return after is not before

    def clear_all(self) -> None:
        """Drop every counter, entity and body, and delete persisted state."""
        self._store.replace(_store.reset)
        self._animations.clear()
        removed = self._simulator.clear()
        self._renderer.render_bodies(self._channel, removed)
        self._writer.delete()
        if self._registry is not None:
            self._registry.broadcast(self._channel, {"type": "cleared", "channel": self._channel})
        _logger.info("Cleared combo state channel=%s", self._channel)

    def stream_online(self) -> None:
        """A new broadcast started: counters start over."""
        _logger.info("Stream went online for %s, clearing data", self._channel)
        self.clear_all()

    def step_simulation(self, dt: float) -> list[BodyUpdate]:
        updates = self._simulator.step(dt)
        if updates:
            self._renderer.render_bodies(self._channel, updates)
        return updates

    async def _run_frames(self) -> None:
        interval = self._config.frame_interval
        while True:
            await asyncio.sleep(interval)
            try:
                self.step_simulation(interval)
            except Exception:  # noqa: BLE001
                _logger.exception("Simulation step failed for %s", self._channel)
