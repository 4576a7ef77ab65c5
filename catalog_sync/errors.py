"""Exception taxonomy for sync runs."""


class SyncError(Exception):
    """Base class for all sync failures."""


class TransportError(SyncError):
    """Raised when the feed cannot be fetched."""


class FeedError(SyncError):
    """Raised when the feed content cannot be used at all."""


class EmptyFeedError(FeedError):
    """Raised when a feed yields zero usable rows."""


class ImageFetchError(SyncError):
    """Raised when a preview image download is rejected or fails."""


class PersistenceError(SyncError):
    """Raised when a file cannot be written."""


class PublishError(SyncError):
    """Raised when the staged page tree cannot be swapped into place."""
