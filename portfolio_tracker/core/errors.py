"""Exceptions raised by the tracker core."""


class TrackerError(Exception):
    pass


class PositionValidationError(TrackerError, ValueError):
    """Rejected position input. Nothing has been written."""


class RefreshError(TrackerError):
    """A refresh cycle could not read or write storage."""
