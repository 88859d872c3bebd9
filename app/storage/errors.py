"""
Storage exceptions.
"""


class StorageError(Exception):
    """Base class for storage adapter failures."""

    def __init__(self, store: str, message: str):
        self.store = store
        self.message = message
        super().__init__(f"[{store}] {message}")


class PrimaryStorageError(StorageError):
    def __init__(self, message: str):
        super().__init__("primary", message)


class BlobNotFoundError(PrimaryStorageError):
    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Blob not found: {handle}")


class SecondaryStorageError(StorageError):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__("secondary", message)
