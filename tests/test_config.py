from __future__ import annotations

from pathlib import Path

import pytest

from pycombo.config import OverlayConfig
from pycombo.exceptions import ComboConfigError
from pycombo.placement import Corner

_ENV_KEYS = (
    "COMBO_SIZE",
    "COMBO_CORNER",
    "COMBO_PERSISTENT_MODE",
    "COMBO_FALL_EFFECT",
    "COMBO_STORAGE_DIR",
    "COMBO_SWEEP_INTERVAL",
    "COMBO_FRAME_INTERVAL",
    "COMBO_ENTITY_EXPIRY",
    "COMBO_RECORD_EXPIRY",
    "COMBO_FIELD_WIDTH",
    "COMBO_FIELD_HEIGHT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    config = OverlayConfig.from_env()

    assert config.size == 3
    assert config.size_multiplier == 1.0
    assert config.corner == Corner.BOTTOM_LEFT
    assert config.persistent_mode is True
    assert config.fall_effect_enabled is False
    assert config.storage_dir is None
    assert config.entity_expiry == 3600.0
    assert config.record_expiry == 12 * 3600.0


def test_environment_values(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COMBO_SIZE", "5")
    monkeypatch.setenv("COMBO_CORNER", "TR")
    monkeypatch.setenv("COMBO_PERSISTENT_MODE", "off")
    monkeypatch.setenv("COMBO_FALL_EFFECT", "yes")
    monkeypatch.setenv("COMBO_STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("COMBO_ENTITY_EXPIRY", "90")
    monkeypatch.setenv("COMBO_FIELD_WIDTH", "1280")

    config = OverlayConfig.from_env()

    assert config.size_multiplier == 2.0
    assert config.corner == Corner.TOP_RIGHT
    assert config.persistent_mode is False
    assert config.fall_effect_enabled is True
    assert config.storage_dir == tmp_path
    assert config.entity_expiry == 90.0
    assert config.field_width == 1280


def test_overrides_beat_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMBO_SIZE", "1")
    monkeypatch.setenv("COMBO_PERSISTENT_MODE", "false")

    config = OverlayConfig.from_env(size=4, persistent_mode=True)

    assert config.size_multiplier == 1.5
    assert config.persistent_mode is True


def test_unknown_selectors_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMBO_SIZE", "9")
    monkeypatch.setenv("COMBO_CORNER", "center")
    monkeypatch.setenv("COMBO_FALL_EFFECT", "maybe")

    config = OverlayConfig.from_env()

    assert config.size_multiplier == 1.0
    assert config.corner == Corner.BOTTOM_LEFT
    assert config.fall_effect_enabled is False


def test_non_numeric_environment_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMBO_SWEEP_INTERVAL", "often")

    with pytest.raises(ComboConfigError, match="COMBO_SWEEP_INTERVAL"):
        OverlayConfig.from_env()


def test_invalid_values_rejected() -> None:
    with pytest.raises(ComboConfigError):
        OverlayConfig(sweep_interval=0)
    with pytest.raises(ComboConfigError):
        OverlayConfig(field_width=-1)


def test_string_corner_is_parsed() -> None:
    assert OverlayConfig(corner="br").corner == Corner.BOTTOM_RIGHT  # type: ignore[arg-type]
