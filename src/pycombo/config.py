"""Overlay configuration for pycombo."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from pycombo._constants import HEART_EXPIRY_MS, HORSE_EXPIRY_MS, size_multiplier
from pycombo.exceptions import ComboConfigError
from pycombo.placement import Corner


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise ComboConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class OverlayConfig:
    """Overlay configuration.

    Parameters
    ----------
    size : int
        Size selector ``1``-``5`` mapped to a ``0.5x``-``2x`` scale
        multiplier. Unknown selectors behave like ``3`` (``1x``).
    corner : Corner
        Corner occupied by the counter display. Placement avoids it.
    persistent_mode : bool
        ``True`` keeps one persistent entity per user for the primary
        category; ``False`` spawns ephemeral falling bodies instead.
    fall_effect_enabled : bool
        Spawn a pass-through falling body for every secondary event.
    storage_dir : Path or None
        Directory for JSON state files. ``None`` keeps state in memory.
    sweep_interval : float
        Seconds between expiry sweeps.
    frame_interval : float
        Seconds between simulator steps in ephemeral mode.
    entity_expiry : float
        Idle seconds before a user entity starts expiring.
    record_expiry : float
        Seconds a secondary-category record keeps counting.
    field_width : int
        Visual field width in pixels (simulator only).
    field_height : int
        Visual field height in pixels (simulator only).
    """

    size: int = 3
    corner: Corner = Corner.BOTTOM_LEFT
    persistent_mode: bool = True
    fall_effect_enabled: bool = False
    storage_dir: Path | None = None
    sweep_interval: float = 1.0
    frame_interval: float = 1 / 60
    entity_expiry: float = HORSE_EXPIRY_MS / 1000
    record_expiry: float = HEART_EXPIRY_MS / 1000
    field_width: int = 1920
    field_height: int = 1080

    def __post_init__(self) -> None:
        if self.sweep_interval <= 0:
            raise ComboConfigError("sweep_interval must be positive")
        if self.frame_interval <= 0:
            raise ComboConfigError("frame_interval must be positive")
        if self.entity_expiry <= 0 or self.record_expiry <= 0:
            raise ComboConfigError("expiry windows must be positive")
        if self.field_width <= 0 or self.field_height <= 0:
            raise ComboConfigError("field dimensions must be positive")
        if not isinstance(self.corner, Corner):
            object.__setattr__(self, "corner", Corner.parse(self.corner))

    @property
    def size_multiplier(self) -> float:
        """Scale multiplier derived from :attr:`size`."""
        return size_multiplier(self.size)

    @classmethod
    def from_env(cls, **overrides: Any) -> OverlayConfig:
        """Create configuration from ``COMBO_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        size_env = env.get("COMBO_SIZE")
        if size_env is not None and "size" not in overrides:
            config_kwargs["size"] = int(_env_number("COMBO_SIZE", size_env, int))

        corner_env = env.get("COMBO_CORNER")
        if corner_env is not None and "corner" not in overrides:
            config_kwargs["corner"] = Corner.parse(corner_env)

        if "persistent_mode" not in overrides:
            config_kwargs["persistent_mode"] = _env_bool(env.get("COMBO_PERSISTENT_MODE"), True)

        if "fall_effect_enabled" not in overrides:
            config_kwargs["fall_effect_enabled"] = _env_bool(env.get("COMBO_FALL_EFFECT"), False)

        storage_env = env.get("COMBO_STORAGE_DIR")
        if storage_env and "storage_dir" not in overrides:
            config_kwargs["storage_dir"] = Path(storage_env).expanduser()

        _ENV_FLOAT_MAP = {
            "COMBO_SWEEP_INTERVAL": "sweep_interval",
            "COMBO_FRAME_INTERVAL": "frame_interval",
            "COMBO_ENTITY_EXPIRY": "entity_expiry",
            "COMBO_RECORD_EXPIRY": "record_expiry",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(_env_number(env_key, val, float))

        _ENV_INT_MAP = {
            "COMBO_FIELD_WIDTH": "field_width",
            "COMBO_FIELD_HEIGHT": "field_height",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(_env_number(env_key, val, int))

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
