"""Custom exception hierarchy for pycombo."""

from __future__ import annotations


class ComboError(Exception):
    """Base exception for all pycombo errors."""


class ComboConfigError(ComboError):
    """Invalid or missing configuration."""


class ComboEventError(ComboError):
    """Inbound event could not be normalized into a :class:`ComboEvent`."""


class ComboStorageError(ComboError):
    """Durable storage read/write failure.

    The overlay treats these as non-fatal: the in-memory snapshot stays
    authoritative for the rest of the session.
    """

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)
