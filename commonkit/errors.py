"""Custom exception hierarchy for commonkit."""

from __future__ import annotations


class CommonKitError(Exception):
    """Base exception for commonkit failures."""


class InvalidArgumentError(CommonKitError, ValueError):
    """Raised when a component is configured or called with an out-of-range value."""


class ClockMovedBackwardError(CommonKitError):
    """Raised when the wall clock moved backward further than the generator tolerates."""

    def __init__(
        self,
        message: str,
        *,
        current: int | None = None,
        last: int | None = None,
    ) -> None:
        self.current = current
        self.last = last
        self.backward_ms = last - current if current is not None and last is not None else None
        super().__init__(message)


class ClockWaitInterruptedError(ClockMovedBackwardError):
    """Raised when a thread waiting for the clock to catch up is interrupted."""
