"""Exception hierarchy for the submap server."""


class SubmapServerError(Exception):
    """Base class for all submap server errors."""


class MapStoreError(SubmapServerError):
    """Map store operation failed."""


class MapNotFoundError(MapStoreError):
    """No map stored under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"No map with key '{key}' in storage")
        self.key = key


class MapKeyCollisionError(MapStoreError):
    """A map with the requested key is already in storage."""

    def __init__(self, key: str):
        super().__init__(f"There is already a map with key '{key}' in storage")
        self.key = key


class MapLoadError(MapStoreError):
    """Map folder is missing or does not hold a valid map."""


class SubmapStateError(SubmapServerError):
    """A submap task flag transition would break loaded -> processed -> merged."""


class QueueClosedError(SubmapServerError):
    """Submap queue no longer accepts tasks (shutdown requested)."""


class WorkerPoolStoppedError(SubmapServerError):
    """Worker pool no longer accepts jobs."""
