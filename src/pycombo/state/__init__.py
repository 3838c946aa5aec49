"""State/store layer.

This package is the single source of truth for how normalized combo events
are merged into a per-channel snapshot, how that snapshot decays over time,
and how it is persisted between reloads.
"""
