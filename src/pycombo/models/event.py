"""Inbound combo event model.

The chat/webhook adapters produce plain dicts; this module is the boundary
that turns them into typed :class:`ComboEvent` instances.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import Field, ValidationError, field_validator

from pycombo.exceptions import ComboEventError
from pycombo.models._base import ComboBaseModel, now_ms

_logger = logging.getLogger(__name__)

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


class Category(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


# Gift identifiers used by the chat integration.
_CATEGORY_ALIASES: dict[str, Category] = {
    "primary": Category.PRIMARY,
    "horselul": Category.PRIMARY,
    "secondary": Category.SECONDARY,
    "heart": Category.SECONDARY,
    "hearts": Category.SECONDARY,
}


def normalize_color(value: Any) -> str | None:
    """Return ``#RRGGBB`` upper-cased, or ``None`` for anything else."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _COLOR_RE.match(text):
        return None
    return text.upper()


class ComboEvent(ComboBaseModel):
    """A single normalized combo trigger."""

    type: Category
    username: str
    color: str | None = None
    bits: int = 0
    timestamp: int = Field(default_factory=now_ms)
    """Epoch milliseconds."""

    id: int | None = None
    """Producer-supplied identifier used to drop replays.

    Kept apart from the process spawn sequence; ``None`` when the producer
    has no stable identifier.
    """

    @field_validator("type", mode="before")
    @classmethod
    def _resolve_category(cls, value: Any) -> Any:
        if isinstance(value, Category):
            return value
        if isinstance(value, str):
            resolved = _CATEGORY_ALIASES.get(value.strip().lower())
            if resolved is not None:
                return resolved
        raise ValueError(f"unknown combo category: {value!r}")

    @field_validator("username", mode="before")
    @classmethod
    def _normalize_username(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("username must be a string")
        username = value.strip().lower()
        if not username:
            raise ValueError("username must be non-empty")
        return username

    @field_validator("color", mode="before")
    @classmethod
    def _normalize_color(cls, value: Any) -> str | None:
        return normalize_color(value)

    @field_validator("bits", mode="before")
    @classmethod
    def _non_negative_bits(cls, value: Any) -> int:
        if value is None or value == "":
            return 0
        try:
            bits = int(value)
        except (TypeError, ValueError):
            return 0
        return max(0, bits)


def parse_event(payload: ComboEvent | Mapping[str, Any]) -> ComboEvent | None:
    """Normalize *payload* into a :class:`ComboEvent`.

    Returns ``None`` for unknown categories and malformed payloads; those
    are ignored by the engine rather than treated as errors.
    """
    if isinstance(payload, ComboEvent):
        return payload
    try:
        return ComboEvent.model_validate(dict(payload))
    except (ValidationError, TypeError, ValueError) as exc:
        _logger.debug("Ignoring combo payload %r: %s", payload, exc)
        return None


def require_event(payload: ComboEvent | Mapping[str, Any]) -> ComboEvent:
    """Strict variant of :func:`parse_event` that raises :class:`ComboEventError`."""
    event = parse_event(payload)
    if event is None:
        raise ComboEventError(f"Invalid combo event payload: {payload!r}")
    return event
