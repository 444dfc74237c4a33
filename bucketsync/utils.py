"""Utility functions for bucketsync."""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

# =============================================================================
# Constants for object store operations
# =============================================================================

# deleteObjects requests accept at most 1000 keys
DELETE_BATCH_SIZE: int = 1000

# Maximum number of keys returned by a single listObjects page
LIST_PAGE_SIZE: int = 1000

# Region used when none is configured (US Standard)
DEFAULT_REGION: str = "us-east-1"

# Default canned ACL for uploaded objects
DEFAULT_ACL: str = "public-read"

# Block size used when hashing files in streaming mode (1 MB)
HASH_CHUNK_SIZE: int = 1024 * 1024

# Content type used when nothing better can be inferred
DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Metadata parameters accepted for an upload (case-sensitive)
PUT_PARAMS: tuple[str, ...] = (
    "CacheControl",
    "ContentDisposition",
    "ContentEncoding",
    "ContentLanguage",
    "ContentLength",
    "ContentMD5",
    "Expires",
    "GrantFullControl",
    "GrantRead",
    "GrantReadACP",
    "GrantWriteACP",
    "Metadata",
    "ServerSideEncryption",
    "StorageClass",
    "WebsiteRedirectLocation",
    "ContentType",
)


def invalid_params(params: dict) -> list[str]:
    """Return the parameter names that are not allowed for an upload.

    Examples:
        >>> invalid_params({"CacheControl": "max-age=60"})
        []
        >>> invalid_params({"cacheControl": "max-age=60", "Foo": "1"})
        ['cacheControl', 'Foo']
    """
    return [name for name in params if name not in PUT_PARAMS]


# =============================================================================
# Hash calculation utilities
# =============================================================================


def calculate_etag(file_path: Union[str, Path], stream: bool = True) -> str:
    """Calculate the MD5 hash of a file in S3 ETag format.

    S3 reports the ETag of a simple upload as the hex MD5 digest wrapped
    in double quotes, so the local hash is formatted the same way.

    Args:
        file_path: Path of the file to hash
        stream: Read the file in chunks instead of loading it at once

    Returns:
        Quoted hex digest, e.g. '"d41d8cd98f00b204e9800998ecf8427e"'

    Raises:
        OSError: If the file cannot be read
    """
    md5 = hashlib.md5()  # noqa: S324
    with open(file_path, "rb") as f:
        if stream:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                md5.update(chunk)
        else:
            md5.update(f.read())
    return f'"{md5.hexdigest()}"'


def calculate_bytes_etag(data: bytes) -> str:
    """Calculate the quoted MD5 hash of an in-memory body."""
    return f'"{hashlib.md5(data).hexdigest()}"'  # noqa: S324


# =============================================================================
# Timestamp utilities
# =============================================================================


def to_timestamp(value: Union[datetime, float, int, str, None]) -> Optional[float]:
    """Convert a server date to a Unix timestamp.

    Accepts datetimes (naive values are taken as UTC), numbers and ISO 8601
    strings, which is what boto3 and the mock store return.

    Args:
        value: Date to convert

    Returns:
        Unix timestamp or None if the value is empty or cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)

    try:
        timestamp_str = value
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
