"""pycombo - Aggregation and decay engine for chat-triggered stream overlay combos."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pycombo")
except PackageNotFoundError:
    __version__ = "0+local"
from pycombo.animation import AnimationController, AnimationState, EntityAnimation, Transition
from pycombo.config import OverlayConfig
from pycombo.exceptions import ComboConfigError, ComboError, ComboEventError, ComboStorageError
from pycombo.models import (
    AggregateCounters,
    Category,
    ComboEvent,
    ComboSnapshot,
    LifecycleState,
    PersistentUserEntity,
    TimestampedRecord,
    parse_event,
)
from pycombo.overlay import ComboOverlay
from pycombo.placement import Corner, Position, place, placement_bounds
from pycombo.registry import ChannelRegistry, Subscription
from pycombo.sequence import SpawnSequence
from pycombo.simulation import FieldSize, SpawnFallSimulator, SpawnKind, SpawnRequest

__all__ = [
    "__version__",
    "AggregateCounters",
    "AnimationController",
    "AnimationState",
    "Category",
    "ChannelRegistry",
    "ComboConfigError",
    "ComboError",
    "ComboEvent",
    "ComboEventError",
    "ComboOverlay",
    "ComboSnapshot",
    "ComboStorageError",
    "Corner",
    "EntityAnimation",
    "FieldSize",
    "LifecycleState",
    "OverlayConfig",
    "PersistentUserEntity",
    "Position",
    "SpawnFallSimulator",
    "SpawnKind",
    "SpawnRequest",
    "SpawnSequence",
    "Subscription",
    "TimestampedRecord",
    "Transition",
    "parse_event",
    "place",
    "placement_bounds",
]
