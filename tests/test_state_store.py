from __future__ import annotations

import random

import pytest

from pycombo.models import Category, ComboEvent, ComboSnapshot, LifecycleState, ProcessedIds
from pycombo.placement import Corner, placement_bounds
from pycombo.state import store
from pycombo.state.expiry import sweep
from pycombo.state.store import ComboStore


def _event(category: Category, username: str, *, event_id: int | None = None, color: str | None = None) -> ComboEvent:
    return ComboEvent(type=category, username=username, color=color, id=event_id, timestamp=0)


def test_three_primary_events_accumulate_on_one_entity() -> None:
    rng = random.Random(1)
    snapshot = ComboSnapshot.empty()

    for i, now in enumerate((1_000, 2_000, 3_000)):
        snapshot = store.add_event(
            snapshot, _event(Category.PRIMARY, "alice", event_id=i, color="#FF0000"), now=now, rng=rng
        )
        if i == 0:
            first_position = (snapshot.entities["alice"].x, snapshot.entities["alice"].y)

    entity = snapshot.entities["alice"]
    assert entity.count == 3
    assert (entity.x, entity.y) == first_position
    assert entity.last_update_timestamp == 3_000
    assert snapshot.aggregate.users["alice"] == 3
    assert snapshot.aggregate.total == 3


def test_repeat_event_refreshes_color_only_when_given() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.PRIMARY, "alice", color="#FF0000"), now=1)
    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice"), now=2)
    assert snapshot.entities["alice"].color == "#FF0000"

    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice", color="#00FF00"), now=3)
    assert snapshot.entities["alice"].color == "#00FF00"


def test_new_entity_without_color_uses_default() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.PRIMARY, "alice"), now=1)

    assert snapshot.entities["alice"].color == "#9147FF"
    assert snapshot.entities["alice"].lifecycle_state == LifecycleState.FALLING


def test_new_entity_respects_reserved_corner() -> None:
    rng = random.Random(5)
    snapshot = ComboSnapshot.empty()
    for i in range(50):
        snapshot = store.add_event(
            snapshot, _event(Category.PRIMARY, f"user{i}"), corner=Corner.TOP_RIGHT, now=1, rng=rng
        )

    bounds = placement_bounds(Corner.TOP_RIGHT)
    for entity in snapshot.entities.values():
        assert bounds.min_x <= entity.x <= bounds.max_x
        assert bounds.min_y <= entity.y <= bounds.max_y


def test_replayed_event_id_is_not_double_counted() -> None:
    event = _event(Category.PRIMARY, "alice", event_id=42)
    once = store.add_event(ComboSnapshot.empty(), event, now=1)
    twice = store.add_event(once, event, now=2)

    assert twice is once
    assert twice.aggregate.total == 1

    record = _event(Category.SECONDARY, "bob", event_id=43)
    with_record = store.add_event(twice, record, now=3)
    assert store.add_event(with_record, record, now=4) is with_record
    assert with_record.secondary_total == 1


def test_events_without_id_are_never_deduplicated() -> None:
    snapshot = ComboSnapshot.empty()
    snapshot = store.add_event(snapshot, _event(Category.SECONDARY, "bob", event_id=0), now=1)
    for now in (2, 3):
        snapshot = store.add_event(snapshot, _event(Category.SECONDARY, "carol"), now=now)

    assert snapshot.secondary_total == 3
    assert len(snapshot.processed_ids) == 1


def test_replays_older_than_the_window_are_applied_again() -> None:
    snapshot = ComboSnapshot(processed_ids=ProcessedIds(limit=2))
    for event_id in (1, 2):
        snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice", event_id=event_id), now=1)

    assert store.add_event(snapshot, _event(Category.PRIMARY, "alice", event_id=2), now=2) is snapshot

    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice", event_id=3), now=3)
    replayed = store.add_event(snapshot, _event(Category.PRIMARY, "alice", event_id=1), now=4)
    assert replayed.aggregate.total == 4
    assert 2 not in replayed.processed_ids


def test_transitions_keep_mappings_read_only() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.PRIMARY, "alice"), now=1)
    snapshot = store.mark_expiring(snapshot, "alice", 2)
    snapshot = sweep(snapshot, 10_000_000)
    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "bob"), now=3)

    with pytest.raises(TypeError):
        snapshot.entities["mallory"] = snapshot.entities["bob"]  # type: ignore[index]
    with pytest.raises(TypeError):
        snapshot.aggregate.users["bob"] = 99  # type: ignore[index]


def test_ephemeral_mode_counts_without_entities() -> None:
    snapshot = ComboSnapshot.empty()
    for _ in range(4):
        snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice"), persistent_mode=False, now=1)

    assert snapshot.entities == {}
    assert snapshot.aggregate.total == 4


def test_secondary_event_appends_record_with_ingestion_time() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.SECONDARY, "bob"), now=1234)

    assert len(snapshot.records) == 1
    assert snapshot.records[0].username == "bob"
    assert snapshot.records[0].timestamp == 1234
    assert snapshot.aggregate.total == 0


def test_remove_entity_subtracts_recorded_count() -> None:
    snapshot = ComboSnapshot.empty()
    for _ in range(2):
        snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice"), now=1)
    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "bob"), now=1)

    removed = store.remove_entity(snapshot, "alice")

    assert "alice" not in removed.entities
    assert removed.aggregate.total == 1
    assert removed.aggregate.users == {"bob": 1}
    # A second removal finds nothing to subtract.
    assert store.remove_entity(removed, "alice") is removed


def test_mark_expiring_is_idempotent() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.PRIMARY, "alice"), now=1)

    first = store.mark_expiring(snapshot, "alice", 100)
    second = store.mark_expiring(first, "alice", 200)

    assert first.entities["alice"].is_expiring
    assert first.entities["alice"].expiry_start_timestamp == 100
    assert second is first


def test_operations_on_absent_user_are_noops() -> None:
    snapshot = ComboSnapshot.empty()

    assert store.remove_entity(snapshot, "ghost") is snapshot
    assert store.mark_expiring(snapshot, "ghost", 1) is snapshot


def test_event_while_expiring_recreates_entity() -> None:
    rng = random.Random(3)
    snapshot = ComboSnapshot.empty()
    for _ in range(3):
        snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice"), now=1, rng=rng)
    snapshot = store.mark_expiring(snapshot, "alice", 10)

    snapshot = store.add_event(snapshot, _event(Category.PRIMARY, "alice"), now=20, rng=rng)

    entity = snapshot.entities["alice"]
    assert entity.count == 1
    assert entity.lifecycle_state == LifecycleState.FALLING
    assert entity.expiry_start_timestamp is None
    assert snapshot.aggregate.users["alice"] == 1
    assert snapshot.aggregate.total == 1


def test_reset_returns_empty_snapshot() -> None:
    snapshot = store.add_event(ComboSnapshot.empty(), _event(Category.PRIMARY, "alice"), now=1)

    assert store.reset(snapshot).is_empty


def test_conservation_holds_across_random_operations() -> None:
    rng = random.Random(7)
    users = ["alice", "bob", "carol"]
    snapshot = ComboSnapshot.empty()
    now = 0

    for step in range(500):
        now += rng.randint(0, 120_000)
        op = rng.random()
        user = rng.choice(users)
        if op < 0.5:
            category = Category.PRIMARY if rng.random() < 0.7 else Category.SECONDARY
            snapshot = store.add_event(snapshot, _event(category, user, event_id=step), now=now, rng=rng)
        elif op < 0.65:
            snapshot = store.mark_expiring(snapshot, user, now)
        elif op < 0.8:
            snapshot = store.remove_entity(snapshot, user)
        else:
            snapshot = sweep(snapshot, now)

        assert snapshot.aggregate.total == sum(snapshot.aggregate.users.values())
        assert all(count > 0 for count in snapshot.aggregate.users.values())
        for entity in snapshot.entities.values():
            assert entity.is_expiring == (entity.expiry_start_timestamp is not None)


def test_store_notifies_listeners_only_on_change() -> None:
    combo_store = ComboStore()
    seen: list[tuple[ComboSnapshot, ComboSnapshot]] = []
    unsubscribe = combo_store.subscribe(lambda old, new: seen.append((old, new)))

    combo_store.replace(store.remove_entity, "ghost")
    assert seen == []

    old = combo_store.snapshot
    new = combo_store.replace(store.add_event, _event(Category.SECONDARY, "bob"), now=1)
    assert seen == [(old, new)]
    assert combo_store.snapshot is new

    unsubscribe()
    combo_store.replace(store.add_event, _event(Category.SECONDARY, "bob"), now=2)
    assert len(seen) == 1


def test_failing_listener_does_not_break_replacement(caplog: pytest.LogCaptureFixture) -> None:
    combo_store = ComboStore()

    def _boom(_old: ComboSnapshot, _new: ComboSnapshot) -> None:
        raise RuntimeError("listener exploded")

    combo_store.subscribe(_boom)
    result = combo_store.replace(store.add_event, _event(Category.SECONDARY, "bob"), now=1)

    assert combo_store.snapshot is result
    assert result.secondary_total == 1
    assert "listener" in caplog.text
