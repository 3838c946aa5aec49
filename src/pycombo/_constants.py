"""Internal constants shared across the library."""

STORAGE_KEY_PREFIX = "combo-overlay-v3-"
DEFAULT_ENTITY_COLOR = "#9147FF"

# ------------------------------------------------------------------
# Expiry windows (milliseconds)
# ------------------------------------------------------------------

HORSE_EXPIRY_MS = 60 * 60 * 1000  # 1 hour idle before a user entity expires
HEART_EXPIRY_MS = 12 * 60 * 60 * 1000  # 12 hours before a record stops counting
EXPLOSION_DURATION_MS = 2000  # store-side grace before an expiring entity is dropped
PROCESSED_ID_WINDOW = 4096  # producer event ids remembered for replay detection

# ------------------------------------------------------------------
# Animation timings (milliseconds)
# ------------------------------------------------------------------

FALL_START_DELAY_MS = 50
FALL_DURATION_MS = 900
JUMP_DURATION_MS = 300
EXPLOSION_ANIMATION_MS = 800
NEW_ENTITY_GRACE_MS = 1500

# ------------------------------------------------------------------
# Size selector (1-5 → 0.5x-2x)
# ------------------------------------------------------------------

SIZE_MULTIPLIERS: dict[int, float] = {
    1: 0.5,
    2: 0.75,
    3: 1.0,
    4: 1.5,
    5: 2.0,
}


def size_multiplier(selector: int | str | None) -> float:
    """Map the 1-5 size selector to a scale multiplier.

    Unknown or unparsable selectors resolve to ``1.0``.
    """
    if selector is None:
        return 1.0
    try:
        key = int(selector)
    except (TypeError, ValueError):
        return 1.0
    return SIZE_MULTIPLIERS.get(key, 1.0)
