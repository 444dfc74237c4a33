"""Object store clients for bucketsync."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import SyncOptions
from .exceptions import (
    AuthenticationError,
    DeleteError,
    ListingError,
    NotFoundError,
    StorageError,
    TransferError,
)
from .models import DeleteObjectsResult, ListObjectsPage, RemoteObject
from .utils import (
    DEFAULT_REGION,
    DELETE_BATCH_SIZE,
    LIST_PAGE_SIZE,
    calculate_etag,
)

logger = logging.getLogger(__name__)

_AUTH_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "InvalidToken",
    }
)
_NOT_FOUND_ERROR_CODES = frozenset({"NoSuchBucket", "NoSuchKey", "404", "NotFound"})


class StorageClient(Protocol):
    """Operations bucketsync needs from an object store.

    Implementations must be safe to share between worker threads.
    """

    bucket: str

    def list_objects(self, prefix: str, marker: str | None = None) -> ListObjectsPage:
        ...

    def get_object(self, key: str) -> bytes:
        ...

    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        acl: str,
        params: dict[str, Any],
    ) -> None:
        ...

    def delete_objects(self, keys: list[str]) -> DeleteObjectsResult:
        ...

    def object_url(self, key: str = "") -> str:
        ...


class S3Client:
    """Client for Amazon S3 and S3-compatible stores, backed by boto3."""

    def __init__(
        self,
        bucket: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        max_retries: int = 0,
    ):
        """Initialize the S3 client.

        Args:
            bucket: Bucket all operations apply to
            access_key_id: AWS access key ID
            secret_access_key: AWS secret access key
            region: AWS region (boto3 default when not provided)
            endpoint_url: Custom endpoint for S3-compatible services
            max_retries: Number of retries botocore may perform (default: 0)
        """
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url

        session = boto3.session.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )
        self._client = session.client(
            "s3",
            endpoint_url=endpoint_url,
            config=Config(
                retries={"total_max_attempts": max_retries + 1, "mode": "standard"}
            ),
        )

    def object_url(self, key: str = "") -> str:
        """Return the URL of an object, used for display only."""
        endpoint = self.endpoint_url or self._client.meta.endpoint_url
        return f"{endpoint.rstrip('/')}/{self.bucket}/{key}"

    def _handle_client_error(
        self,
        e: ClientError,
        error_class: type[StorageError],
        key: str | None = None,
    ) -> StorageError:
        """Translate a botocore ClientError into a bucketsync exception.

        Args:
            e: The botocore error
            error_class: Exception class used for generic failures
            key: Object key the request was about, if any

        Returns:
            Exception to raise
        """
        error = e.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or str(e)

        if code in _AUTH_ERROR_CODES:
            return AuthenticationError(
                f"Access denied - check your credentials: {message}", key, code
            )
        if code in _NOT_FOUND_ERROR_CODES:
            target = key if key else f"bucket {self.bucket}"
            return NotFoundError(f"Not found: {target} ({message})", key, code)
        return error_class(f"{code}: {message}" if code else message, key, code)

    def list_objects(self, prefix: str, marker: str | None = None) -> ListObjectsPage:
        """List one page of objects under a prefix.

        Args:
            prefix: Key prefix ("" for the whole bucket)
            marker: Key to start listing after

        Returns:
            ListObjectsPage with the objects and truncation state

        Raises:
            ListingError: If the request fails
        """
        request: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if marker:
            request["Marker"] = marker

        try:
            response = self._client.list_objects(**request)
        except ClientError as e:
            raise self._handle_client_error(e, ListingError) from e
        except BotoCoreError as e:
            raise ListingError(f"Network error while listing: {e}") from e

        return ListObjectsPage.from_api_response(response)

    def get_object(self, key: str) -> bytes:
        """Download an object and return its body."""
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            raise self._handle_client_error(e, TransferError, key) from e
        except BotoCoreError as e:
            raise TransferError(f"Network error during download: {e}", key) from e

    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        acl: str,
        params: dict[str, Any],
    ) -> None:
        """Upload an object.

        Args:
            key: Destination key
            body: Object content
            content_type: MIME type stored with the object
            acl: Canned ACL (e.g. "public-read")
            params: Additional PutObject parameters (CacheControl, Metadata...)
        """
        request = dict(params)
        request.update(
            {
                "Bucket": self.bucket,
                "Key": key,
                "Body": body,
                "ContentType": content_type,
            }
        )
        if acl:
            request["ACL"] = acl

        try:
            self._client.put_object(**request)
        except ClientError as e:
            raise self._handle_client_error(e, TransferError, key) from e
        except BotoCoreError as e:
            raise TransferError(f"Network error during upload: {e}", key) from e

    def delete_objects(self, keys: list[str]) -> DeleteObjectsResult:
        """Delete up to 1000 objects in a single request.

        Raises:
            ValueError: If more than 1000 keys are given
            DeleteError: If the request as a whole fails
        """
        if len(keys) > DELETE_BATCH_SIZE:
            raise ValueError(
                f"Cannot delete more than {DELETE_BATCH_SIZE} keys per request"
            )

        try:
            response = self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": False},
            )
        except ClientError as e:
            error = self._handle_client_error(e, DeleteError)
            raise DeleteError(
                str(error),
                failed=[{"key": k, "message": str(error)} for k in keys],
                code=error.code,
            ) from e
        except BotoCoreError as e:
            raise DeleteError(
                f"Network error during delete: {e}",
                failed=[{"key": k, "message": str(e)} for k in keys],
            ) from e

        return DeleteObjectsResult.from_api_response(response)


class MockClient:
    """Object store emulated on the local filesystem.

    Objects of ``bucket`` are stored as files under ``root/bucket``. Used
    for the ``mock`` option and in tests; no credentials are required.
    """

    def __init__(self, bucket: str, root: Path | str, page_size: int = LIST_PAGE_SIZE):
        self.bucket = bucket
        self.root = Path(root) / bucket
        self.page_size = page_size
        self.root.mkdir(parents=True, exist_ok=True)

    def object_url(self, key: str = "") -> str:
        """Return the URL of an object, used for display only."""
        return f"mock://{self.bucket}/{key}"

    def _path(self, key: str) -> Path:
        return self.root / key

    def _all_keys(self) -> list[str]:
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file()
        )

    def list_objects(self, prefix: str, marker: str | None = None) -> ListObjectsPage:
        """List one page of objects under a prefix, sorted by key."""
        keys = [k for k in self._all_keys() if k.startswith(prefix)]
        if marker:
            keys = [k for k in keys if k > marker]

        page = keys[: self.page_size]
        objects = []
        for key in page:
            path = self._path(key)
            try:
                stat = path.stat()
                etag = calculate_etag(path)
            except OSError as e:
                raise ListingError(f"Failed to read mock object {key}: {e}") from e
            objects.append(
                RemoteObject(
                    key=key,
                    etag=etag,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc),
                    size=stat.st_size,
                )
            )

        truncated = len(keys) > self.page_size
        logger.debug(
            "Mock listing %r after %r: %d object(s), truncated=%s",
            prefix,
            marker,
            len(objects),
            truncated,
        )
        return ListObjectsPage(
            objects=objects,
            is_truncated=truncated,
            next_marker=page[-1] if truncated else None,
        )

    def get_object(self, key: str) -> bytes:
        """Read an object."""
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Not found: {key}", key, "NoSuchKey")
        try:
            return path.read_bytes()
        except OSError as e:
            raise TransferError(f"Failed to read mock object {key}: {e}", key) from e

    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        acl: str,
        params: dict[str, Any],
    ) -> None:
        """Write an object; content type, ACL and params are not stored."""
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as e:
            raise TransferError(f"Failed to write mock object {key}: {e}", key) from e

    def delete_objects(self, keys: list[str]) -> DeleteObjectsResult:
        """Delete objects; missing keys count as deleted, like S3."""
        if len(keys) > DELETE_BATCH_SIZE:
            raise ValueError(
                f"Cannot delete more than {DELETE_BATCH_SIZE} keys per request"
            )

        result = DeleteObjectsResult()
        for key in keys:
            path = self._path(key)
            try:
                if path.is_file():
                    path.unlink()
                    self._prune_empty_dirs(path.parent)
                result.deleted.append(key)
            except OSError as e:
                result.errors.append({"key": key, "message": str(e)})
        return result

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.root and directory.is_dir():
            try:
                os.rmdir(directory)
            except OSError:
                # Not empty, or removed by a concurrent delete
                break
            directory = directory.parent


def create_client(options: SyncOptions) -> StorageClient:
    """Create the client described by the options.

    Args:
        options: Validated sync options

    Returns:
        MockClient when ``options.mock`` is set, S3Client otherwise
    """
    if options.mock:
        root = options.mock_root or os.path.join(os.getcwd(), ".bucketsync-mock")
        logger.debug("Using mock store under %s", root)
        return MockClient(options.bucket, root)

    if not options.region:
        logger.warning("No region defined, S3 will default to %s", DEFAULT_REGION)

    return S3Client(
        bucket=options.bucket,
        access_key_id=options.access_key_id,
        secret_access_key=options.secret_access_key,
        region=options.effective_region,
        endpoint_url=options.endpoint_url,
        max_retries=options.max_retries,
    )
