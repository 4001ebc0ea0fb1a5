"""Tracker error types."""


class TrackerError(Exception):
    """Base error for the room tracker."""


class TransportError(TrackerError):
    """Raised when a snapshot fetch fails or times out."""


class StoreUnavailableError(TrackerError):
    """Raised when the store cannot be reached at startup."""


class SweepTimeoutError(TrackerError):
    """Raised when a sweep exceeds its overall deadline."""
