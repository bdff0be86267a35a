"""Engine error taxonomy.

Policy outcomes (a failed verification, an invalid occurrence count) are
return values, never exceptions. Only malformed input and store I/O raise.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for everything the engine raises."""


class ValidationError(EngineError):
    """Malformed schedule, date, or goal input. Not retryable."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StoreUnavailableError(EngineError):
    """A persistent or local store call could not complete."""
