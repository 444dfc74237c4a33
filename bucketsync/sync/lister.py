"""Bucket listing with automatic pagination."""

from __future__ import annotations

import logging
from typing import Optional

from ..api import StorageClient
from ..exceptions import ListingError, StorageError
from ..models import RemoteObject
from ..utils import format_size

logger = logging.getLogger(__name__)


class ObjectLister:
    """Lists every object under a prefix, following truncated pages."""

    def __init__(self, client: StorageClient):
        """Initialize the lister.

        Args:
            client: Object store client
        """
        self.client = client

    def list(self, prefix: str = "") -> list[RemoteObject]:
        """List all objects under a prefix.

        Pages are requested with a marker while the store reports the
        listing as truncated. Keys are unique in the result; the first
        occurrence of a key wins.

        Args:
            prefix: Key prefix ("" lists the whole bucket)

        Returns:
            List of RemoteObject in listing order

        Raises:
            ListingError: If any page cannot be fetched. There is no partial
                result: reconciling against an incomplete listing is unsafe.
        """
        objects: list[RemoteObject] = []
        marker: Optional[str] = None
        page_count = 0

        while True:
            try:
                page = self.client.list_objects(prefix, marker)
            except StorageError as e:
                raise ListingError(
                    f"Failed to list content of bucket {self.client.bucket}: {e}",
                    code=e.code,
                ) from e

            page_count += 1
            objects.extend(page.objects)
            logger.debug(
                "Listed page %d of %r: %d object(s), truncated=%s",
                page_count,
                prefix,
                len(page.objects),
                page.is_truncated,
            )

            if not page.is_truncated:
                break

            next_marker = page.next_marker or (
                page.objects[-1].key if page.objects else None
            )
            if next_marker is None or next_marker == marker:
                raise ListingError(
                    f"Listing of bucket {self.client.bucket} is truncated "
                    "but no marker to continue from was returned"
                )
            marker = next_marker

        unique = self._deduplicate(objects)
        logger.debug(
            "Listed %d object(s) (%s) under %r in %d page(s)",
            len(unique),
            format_size(sum(o.size for o in unique)),
            prefix,
            page_count,
        )
        return unique

    @staticmethod
    def _deduplicate(objects: list[RemoteObject]) -> list[RemoteObject]:
        seen: set[str] = set()
        unique = []
        for obj in objects:
            if obj.key not in seen:
                seen.add(obj.key)
                unique.append(obj)
        return unique
