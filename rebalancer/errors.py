"""Engine error taxonomy.

Validation errors are raised before any collaborator is called. Venue and pool
errors are caught at the router/controller seam and turned into result objects,
so nothing here is fatal to the scheduler.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


class InvalidInput(EngineError, ValueError):
    """Zero/negative amount, short path, or amount above the configured limits."""


class Unauthorized(EngineError, PermissionError):
    """A mutating entry point was called by someone other than the operator."""


class TickInProgress(EngineError):
    """Another tick already holds the position critical section."""


class VenueUnavailable(EngineError):
    """A venue failed or timed out while quoting."""


class VenueError(EngineError):
    """A venue rejected an execution request."""


class DeadlineExpired(VenueError):
    """The absolute execution deadline passed before the venue filled."""


class SlippageExceeded(VenueError):
    """The venue could not deliver at least the requested minimum output."""
