"""Error taxonomy shared by the index, analyzers, repos, and API."""


class EventVolError(Exception):
    """Base class for all EventVol failures."""


class NotFoundError(EventVolError):
    """Symbol has no candle data, or an event type has no occurrences."""


class ValidationError(EventVolError, ValueError):
    """Caller supplied an out-of-range or malformed argument."""


class InsufficientDataError(EventVolError):
    """Data exists but not enough of it to compute a result."""


class StorageError(EventVolError):
    """Underlying SQLite read or write failed."""
