class TrackingError(Exception):
    """Base class for tracking pipeline errors."""


class MalformedBatchError(TrackingError):
    """Ingest payload does not have the ``{"events": [...]}`` shape."""


class StorageError(TrackingError):
    """Event or opt-out storage could not be reached."""
