"""Base model for pycombo data types.

Every model inherits from :class:`ComboBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys of the persisted and
  inbound JSON map automatically to snake_case fields.
* ``frozen=True``: instances are immutable snapshots, state transitions
  produce new instances via ``model_copy(update=...)``.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class ComboBaseModel(BaseModel):
    """Base for pycombo models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
