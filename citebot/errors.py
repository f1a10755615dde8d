"""Exception types shared by the turn pipeline, services and routers."""
from __future__ import annotations


class InvalidTurnInput(ValueError):
    """Missing/empty message or malformed session id. Raised before any I/O."""


class SessionUnavailableError(RuntimeError):
    """The session store could not be read or written. The caller may retry."""

    retryable = True


class SessionNotFoundError(LookupError):
    pass


class InvalidStatusTransition(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move session from '{current}' to '{target}'.")
        self.current = current
        self.target = target


class RankerError(RuntimeError):
    """Re-rank call failed or timed out. Always recovered with lexical order."""


class GenerationError(RuntimeError):
    """Answer generation failed. There is no safe fallback for missing text."""
