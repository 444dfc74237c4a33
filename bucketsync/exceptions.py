"""Custom exceptions for bucketsync."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .sync.outcome import TaskOutcome


class BucketSyncError(Exception):
    """Base exception for all bucketsync errors."""


class ConfigurationError(BucketSyncError):
    """Invalid or incomplete configuration.

    Raised before any network activity takes place.
    """


class StorageError(BucketSyncError):
    """Error returned by the object store."""

    def __init__(self, message: str, key: Optional[str] = None, code: str = ""):
        super().__init__(message)
        self.key = key
        self.code = code


class AuthenticationError(StorageError):
    """Credentials were rejected by the object store."""


class NotFoundError(StorageError):
    """Bucket or object does not exist."""


class ListingError(StorageError):
    """Listing the content of a bucket failed."""


class TransferError(StorageError):
    """Uploading or downloading an object failed."""


class DeleteError(StorageError):
    """A batch delete request failed."""

    def __init__(
        self,
        message: str,
        failed: Optional[list[dict[str, Any]]] = None,
        code: str = "",
    ):
        super().__init__(message, code=code)
        self.failed = failed or []


class LocalFileError(BucketSyncError):
    """Reading, hashing or writing a local file failed."""

    def __init__(self, path: Any, error: OSError):
        super().__init__(f"{path}: {error.strerror or error}")
        self.path = path
        self.error = error


class TaskFailedError(BucketSyncError):
    """A sync task finished with at least one failed object."""

    def __init__(self, outcome: TaskOutcome):
        keys = outcome.failed_keys
        super().__init__(
            f"{outcome.action.value.capitalize()} failed for "
            f"{len(keys)} object(s): {', '.join(keys)}"
        )
        self.outcome = outcome


class SyncRunError(BucketSyncError):
    """A sync run was aborted.

    ``outcomes`` holds the outcomes of every task executed before (and
    including) the one that failed.
    """

    def __init__(self, message: str, outcomes: list[TaskOutcome]):
        super().__init__(message)
        self.outcomes = outcomes
