"""Error types raised by the event map pipeline."""
from typing import Dict, List, Optional


class EventMapError(Exception):
    """Base class for all event map errors."""


class ValidationError(EventMapError, ValueError):
    """Malformed input passed to a pure function (coordinates, dates, counts)."""


class NetworkError(EventMapError):
    """Transport failure talking to an external service."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class RequestTimeout(NetworkError):
    """A request exceeded its time bound."""


class InvalidResponseError(NetworkError):
    """The service answered, but not with the documented payload shape."""


class TilesUnavailable(NetworkError):
    """Every tile query of a fan-out failed."""

    def __init__(self, failures: Dict[str, EventMapError]):
        super().__init__(f"All {len(failures)} tile queries failed")
        self.failures = failures


class PartialFailure(EventMapError):
    """
    Some, but not all, tile queries failed.

    Attached to a degraded result rather than raised, so callers can keep
    the events that did arrive and still surface a recoverable error.
    """

    def __init__(self, failures: Dict[str, EventMapError], succeeded: List[str]):
        super().__init__(
            f"{len(failures)} of {len(failures) + len(succeeded)} tile queries failed"
        )
        self.failures = failures
        self.succeeded = succeeded

    @property
    def failed_tiles(self) -> List[str]:
        return list(self.failures)


class LocationUnavailable(EventMapError):
    """A location provider could not produce a position."""
