"""Persisted snapshot schema and storage backends.

Loading is tolerant per field: a malformed ``records``, ``aggregate`` or
``entities`` section falls back to its empty default without discarding
the sections that did parse. Key names written by earlier overlay builds
(``hearts``, ``horselul``, ``userHorses``) are accepted on load.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
import os
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from pycombo._constants import DEFAULT_ENTITY_COLOR, STORAGE_KEY_PREFIX
from pycombo.exceptions import ComboStorageError
from pycombo.models.event import normalize_color
from pycombo.models.state import (
    AggregateCounters,
    ComboSnapshot,
    LifecycleState,
    PersistentUserEntity,
    TimestampedRecord,
)

_logger = logging.getLogger(__name__)


def storage_key(channel: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{channel.strip().lower()}"


# ------------------------------------------------------------------
# Schema
# ------------------------------------------------------------------


class _PersistedEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    color: str = DEFAULT_ENTITY_COLOR
    count: int = Field(default=1, ge=1)
    x: float
    y: float
    last_update_timestamp: int = Field(
        validation_alias=AliasChoices("lastUpdateTimestamp", "last_update_timestamp", "timestamp"),
    )
    is_expiring: bool = Field(default=False, validation_alias=AliasChoices("isExpiring", "is_expiring"))
    expiry_start_timestamp: int | None = Field(
        default=None,
        validation_alias=AliasChoices("expiryStartTimestamp", "expiry_start_timestamp", "expiringAt"),
    )

    @field_validator("color", mode="before")
    @classmethod
    def _color_or_default(cls, value: Any) -> str:
        return normalize_color(value) or DEFAULT_ENTITY_COLOR

    @field_validator("x", "y")
    @classmethod
    def _clamp_percent(cls, value: float) -> float:
        return min(100.0, max(0.0, value))

    def to_entity(self) -> PersistentUserEntity:
        return PersistentUserEntity(
            color=self.color,
            count=self.count,
            x=self.x,
            y=self.y,
            last_update_timestamp=self.last_update_timestamp,
            lifecycle_state=LifecycleState.EXPIRING if self.is_expiring else LifecycleState.FALLING,
            expiry_start_timestamp=self.expiry_start_timestamp if self.is_expiring else None,
        )


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _load_records(raw: Any) -> tuple[TimestampedRecord, ...]:
    if not isinstance(raw, list):
        return ()
    records: list[TimestampedRecord] = []
    for item in raw:
        try:
            records.append(TimestampedRecord.model_validate(item))
        except ValidationError:
            _logger.debug("Dropping malformed record %r", item)
    return tuple(records)


def _load_aggregate(raw: Any) -> AggregateCounters:
    if not isinstance(raw, Mapping):
        return AggregateCounters()
    users_raw = raw.get("users")
    if not isinstance(users_raw, Mapping):
        return AggregateCounters()
    users: dict[str, int] = {}
    for name, count in users_raw.items():
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            _logger.debug("Dropping malformed aggregate entry %r=%r", name, count)
            continue
        users[str(name)] = int(count)
    # The stored total is not trusted; it is rebuilt from the per-user counts.
    return AggregateCounters.from_users(users)


def _load_entities(raw: Any) -> dict[str, PersistentUserEntity]:
    if not isinstance(raw, Mapping):
        return {}
    entities: dict[str, PersistentUserEntity] = {}
    for username, item in raw.items():
        try:
            entities[str(username)] = _PersistedEntity.model_validate(item).to_entity()
        except ValidationError:
            _logger.debug("Dropping malformed entity %r", username)
    return entities


def load_snapshot(payload: Any) -> ComboSnapshot:
    """Build a snapshot from a persisted payload, never raising."""
    if not isinstance(payload, Mapping):
        if payload is not None:
            _logger.warning("Persisted state is not an object (%s); starting empty", type(payload).__name__)
        return ComboSnapshot.empty()

    return ComboSnapshot(
        records=_load_records(_first_present(payload, "records", "hearts")),
        aggregate=_load_aggregate(_first_present(payload, "aggregate", "horselul")),
        entities=_load_entities(_first_present(payload, "entities", "userHorses")),
    )


def dump_snapshot(snapshot: ComboSnapshot) -> dict[str, Any]:
    """Serialize *snapshot* into the persisted schema."""
    entities: dict[str, dict[str, Any]] = {}
    for username, entity in snapshot.entities.items():
        item: dict[str, Any] = {
            "color": entity.color,
            "count": entity.count,
            "x": entity.x,
            "y": entity.y,
            "lastUpdateTimestamp": entity.last_update_timestamp,
            "isExpiring": entity.is_expiring,
        }
        if entity.expiry_start_timestamp is not None:
            item["expiryStartTimestamp"] = entity.expiry_start_timestamp
        entities[username] = item

    return {
        "records": [{"username": r.username, "timestamp": r.timestamp} for r in snapshot.records],
        "aggregate": {"total": snapshot.aggregate.total, "users": dict(snapshot.aggregate.users)},
        "entities": entities,
    }


# ------------------------------------------------------------------
# Backends
# ------------------------------------------------------------------


class StateStorage(Protocol):
    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, payload: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, mostly for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        text = self._items.get(key)
        if text is None:
            return None
        return json.loads(text)

    def save(self, key: str, payload: dict[str, Any]) -> None:
        self._items[key] = json.dumps(payload)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._items


class JsonFileStorage:
    """One JSON file per storage key inside *directory*."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ComboStorageError(f"Failed to read {path}: {exc}", key=key) from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ComboStorageError(f"Corrupt state file {path}: {exc}", key=key) from exc

    def save(self, key: str, payload: dict[str, Any]) -> None:
        path = self._path(key)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        except OSError as exc:
            raise ComboStorageError(f"Failed to write {path}: {exc}", key=key) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise ComboStorageError(f"Failed to write {path}: {exc}", key=key) from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise ComboStorageError(f"Failed to delete {path}: {exc}", key=key) from exc


# ------------------------------------------------------------------
# Writer
# ------------------------------------------------------------------


class StateWriter:
    """Runs the writes for one storage key off the event loop.

    Inside a running loop each write goes to the default executor, one at a
    time; while a write is in flight only the most recently requested one is
    kept. Without a running loop writes happen inline. Storage failures are
    logged and never raised.
    """

    def __init__(self, storage: StateStorage, key: str) -> None:
        self._storage = storage
        self._key = key
        self._inflight: asyncio.Future[None] | None = None
        self._pending: tuple[str, Callable[[], None]] | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    def save(self, payload: dict[str, Any]) -> None:
        self._submit("save", functools.partial(self._storage.save, self._key, payload))

    def delete(self) -> None:
        self._submit("delete", functools.partial(self._storage.delete, self._key))

    async def flush(self) -> None:
        """Wait until every requested write has finished."""
        while self._inflight is not None:
            await asyncio.wait({self._inflight})

    def _submit(self, action: str, op: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run_inline(action, op)
            return
        if self._inflight is not None:
            self._pending = (action, op)
            return
        self._start(loop, action, op)

    def _run_inline(self, action: str, op: Callable[[], None]) -> None:
        try:
            op()
        except ComboStorageError as exc:
            self._log_failure(action, exc)

    def _start(self, loop: asyncio.AbstractEventLoop, action: str, op: Callable[[], None]) -> None:
        future = loop.run_in_executor(None, op)
        self._inflight = future
        future.add_done_callback(functools.partial(self._on_done, action))

    def _on_done(self, action: str, future: asyncio.Future[None]) -> None:
        self._inflight = None
        if not future.cancelled():
            exc = future.exception()
            if isinstance(exc, ComboStorageError):
                self._log_failure(action, exc)
            elif exc is not None:
                _logger.error("Unexpected error during %s of %s", action, self._key, exc_info=exc)
        pending = self._pending
        self._pending = None
        if pending is not None:
            self._start(future.get_loop(), *pending)

    def _log_failure(self, action: str, exc: ComboStorageError) -> None:
        _logger.warning("Failed to %s combo state %s: %s", action, self._key, exc)
