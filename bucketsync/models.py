"""Data models for object store responses."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union


@dataclass(frozen=True)
class RemoteObject:
    """An object reported by a bucket listing.

    Instances are never modified after listing; decisions about an object
    are tracked separately (see ``ReconciliationDecision``).
    """

    key: str
    """Object key"""

    etag: str
    """Content hash, quoted the way S3 reports it"""

    last_modified: Union[datetime, float, str, None] = None
    """Last modification date as returned by the store"""

    size: int = 0
    """Object size in bytes"""

    @property
    def is_directory_marker(self) -> bool:
        """Whether the key denotes a folder placeholder (ends with '/')."""
        return self.key.endswith("/")

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteObject":
        """Create a RemoteObject from an S3 ``Contents`` entry."""
        return cls(
            key=data["Key"],
            etag=data.get("ETag", ""),
            last_modified=data.get("LastModified"),
            size=data.get("Size", 0),
        )


@dataclass
class ListObjectsPage:
    """A single page of a bucket listing."""

    objects: list[RemoteObject] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ListObjectsPage":
        """Create a page from an S3 ``ListObjects`` response."""
        return cls(
            objects=[RemoteObject.from_api_response(o) for o in data.get("Contents", [])],
            is_truncated=bool(data.get("IsTruncated", False)),
            next_marker=data.get("NextMarker"),
        )


@dataclass
class DeleteObjectsResult:
    """Result of a single batch delete request."""

    deleted: list[str] = field(default_factory=list)
    """Keys that were deleted"""

    errors: list[dict[str, str]] = field(default_factory=list)
    """Per-key failures as ``{"key": ..., "message": ...}``"""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "DeleteObjectsResult":
        """Create a result from an S3 ``DeleteObjects`` response."""
        return cls(
            deleted=[d["Key"] for d in data.get("Deleted", [])],
            errors=[
                {
                    "key": e.get("Key", ""),
                    "message": e.get("Message") or e.get("Code", "Unknown error"),
                }
                for e in data.get("Errors", [])
            ],
        )
