"""bucketsync - Synchronize a local file tree with an S3 bucket."""

from .api import MockClient, S3Client, StorageClient, create_client
from .config import SyncOptions
from .exceptions import (
    AuthenticationError,
    BucketSyncError,
    ConfigurationError,
    DeleteError,
    ListingError,
    LocalFileError,
    NotFoundError,
    StorageError,
    SyncRunError,
    TaskFailedError,
    TransferError,
)
from .models import DeleteObjectsResult, ListObjectsPage, RemoteObject
from .utils import calculate_etag

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "S3Client",
    "MockClient",
    "StorageClient",
    "create_client",
    "SyncOptions",
    "RemoteObject",
    "ListObjectsPage",
    "DeleteObjectsResult",
    "BucketSyncError",
    "ConfigurationError",
    "StorageError",
    "AuthenticationError",
    "NotFoundError",
    "ListingError",
    "TransferError",
    "DeleteError",
    "LocalFileError",
    "TaskFailedError",
    "SyncRunError",
    "calculate_etag",
]
