from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from pycombo.exceptions import ComboStorageError
from pycombo.models import Category, ComboEvent, ComboSnapshot, LifecycleState
from pycombo.state import store
from pycombo.state.persistence import (
    JsonFileStorage,
    MemoryStorage,
    StateWriter,
    dump_snapshot,
    load_snapshot,
    storage_key,
)


def _sample_snapshot() -> ComboSnapshot:
    snapshot = ComboSnapshot.empty()
    for username in ("alice", "alice", "bob"):
        event = ComboEvent(type=Category.PRIMARY, username=username, color="#00FF00", timestamp=0)
        snapshot = store.add_event(snapshot, event, now=1_000)
    snapshot = store.add_event(snapshot, ComboEvent(type=Category.SECONDARY, username="carol", timestamp=0), now=2_000)
    return store.mark_expiring(snapshot, "bob", 3_000)


def test_storage_key_is_per_channel() -> None:
    assert storage_key(" SomeChannel ") == "combo-overlay-v3-somechannel"


def test_dump_and_load_preserve_state() -> None:
    snapshot = _sample_snapshot()

    payload = json.loads(json.dumps(dump_snapshot(snapshot)))
    restored = load_snapshot(payload)

    assert payload["entities"]["bob"]["isExpiring"] is True
    assert payload["entities"]["bob"]["expiryStartTimestamp"] == 3_000
    assert "expiryStartTimestamp" not in payload["entities"]["alice"]
    assert restored.records == snapshot.records
    assert restored.aggregate == snapshot.aggregate
    assert restored.entities["alice"].count == 2
    assert restored.entities["alice"].x == snapshot.entities["alice"].x
    assert restored.entities["bob"].is_expiring
    assert restored.entities["bob"].expiry_start_timestamp == 3_000
    assert len(restored.processed_ids) == 0
    with pytest.raises(TypeError):
        restored.entities["mallory"] = restored.entities["alice"]  # type: ignore[index]
    with pytest.raises(TypeError):
        restored.aggregate.users["alice"] = 7  # type: ignore[index]


def test_malformed_sections_fall_back_independently() -> None:
    payload = {
        "records": "not-a-list",
        "aggregate": {"total": 99, "users": {"alice": 2, "bob": "lots", "carol": 0}},
        "entities": {
            "alice": {"x": 10},
            "bob": {"color": "purple", "count": 1, "x": 150, "y": -3, "lastUpdateTimestamp": 5},
        },
    }

    snapshot = load_snapshot(payload)

    assert snapshot.records == ()
    assert snapshot.aggregate.users == {"alice": 2}
    assert snapshot.aggregate.total == 2
    assert list(snapshot.entities) == ["bob"]
    bob = snapshot.entities["bob"]
    assert bob.color == "#9147FF"
    assert (bob.x, bob.y) == (100.0, 0.0)
    assert bob.lifecycle_state == LifecycleState.FALLING


def test_bad_records_are_dropped_individually() -> None:
    snapshot = load_snapshot(
        {"records": [{"username": "a", "timestamp": 1}, {"username": "b"}, "junk", {"username": "c", "timestamp": 3}]}
    )

    assert [r.username for r in snapshot.records] == ["a", "c"]


def test_legacy_key_names_are_accepted() -> None:
    payload = {
        "hearts": [{"username": "bob", "timestamp": 1}],
        "horselul": {"total": 1, "users": {"alice": 1}},
        "userHorses": {
            "alice": {
                "color": "#ff0000",
                "count": 1,
                "x": 50,
                "y": 60,
                "timestamp": 5,
                "isExpiring": True,
                "expiringAt": 7,
            }
        },
    }

    snapshot = load_snapshot(payload)

    assert snapshot.secondary_total == 1
    assert snapshot.primary_total == 1
    alice = snapshot.entities["alice"]
    assert alice.color == "#FF0000"
    assert alice.last_update_timestamp == 5
    assert alice.is_expiring
    assert alice.expiry_start_timestamp == 7


@pytest.mark.parametrize("payload", [None, [], "text", 42])
def test_non_object_payload_loads_empty(payload: object) -> None:
    assert load_snapshot(payload).is_empty


def test_memory_storage_round_trip() -> None:
    storage = MemoryStorage()
    assert storage.load("k") is None

    storage.save("k", {"records": []})
    assert "k" in storage
    assert storage.load("k") == {"records": []}

    storage.delete("k")
    storage.delete("k")
    assert "k" not in storage


def test_json_file_storage(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "state")
    key = storage_key("chan")
    assert storage.load(key) is None

    storage.save(key, dump_snapshot(_sample_snapshot()))
    assert (tmp_path / "state" / f"{key}.json").is_file()
    assert load_snapshot(storage.load(key)).primary_total == 3
    assert [p.name for p in (tmp_path / "state").iterdir()] == [f"{key}.json"]

    storage.delete(key)
    storage.delete(key)
    assert storage.load(key) is None


def test_json_file_storage_corrupt_file_raises(tmp_path: Path) -> None:
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ComboStorageError) as excinfo:
        JsonFileStorage(tmp_path).load("bad")
    assert excinfo.value.key == "bad"


def test_json_file_storage_unserializable_payload_leaves_no_temp_file(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path)

    with pytest.raises(ComboStorageError):
        storage.save("k", {"bad": object()})
    assert list(tmp_path.iterdir()) == []


class _FailingStorage(MemoryStorage):
    def save(self, key: str, payload: dict[str, Any]) -> None:
        raise ComboStorageError("read-only filesystem", key=key)


def test_writer_without_loop_writes_inline(caplog: pytest.LogCaptureFixture) -> None:
    storage = MemoryStorage()
    writer = StateWriter(storage, "k")

    writer.save({"records": []})
    assert storage.load("k") == {"records": []}
    assert not writer.busy

    writer.delete()
    assert "k" not in storage

    StateWriter(_FailingStorage(), "k").save({"records": []})
    assert "Failed to save combo state k: read-only filesystem" in caplog.text


@pytest.mark.asyncio
async def test_writer_in_loop_writes_latest_payload(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path)
    writer = StateWriter(storage, "k")

    for total in range(1, 6):
        writer.save({"aggregate": {"total": total, "users": {"alice": total}}})
    assert writer.busy

    await writer.flush()

    assert not writer.busy
    assert load_snapshot(storage.load("k")).primary_total == 5
    await writer.flush()


@pytest.mark.asyncio
async def test_writer_logs_background_failure(caplog: pytest.LogCaptureFixture) -> None:
    writer = StateWriter(_FailingStorage(), "k")

    writer.save({"records": []})
    await writer.flush()

    assert "Failed to save combo state k" in caplog.text
