"""
Storage error taxonomy.

Stores never retry; these propagate to the HTTP layer, which maps them
to a 500 response.
"""


class StorageError(Exception):
    """Base class for failures of a flat-file store."""

    def __init__(self, path, message: str):
        self.path = str(path)
        super().__init__(f"{self.path}: {message}")


class StoreIOError(StorageError):
    """The document could not be read or written."""


class MalformedDataError(StorageError):
    """The document exists but does not parse into the expected structure."""
