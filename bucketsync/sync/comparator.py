"""Content comparison between local files and remote objects."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..exceptions import LocalFileError
from ..utils import calculate_etag, to_timestamp

logger = logging.getLogger(__name__)

ServerDate = Optional[Union[datetime, float, str]]


class DateCompare(str, Enum):
    """How modification dates are compared when hashes differ."""

    OLDER = "older"
    """Different if the local file is older than the server copy"""

    NEWER = "newer"
    """Different if the local file is newer than the server copy"""


@dataclass
class ReconciliationDecision:
    """What to do with one object of a task.

    Kept next to the listed object instead of modifying it.
    """

    key: str
    """Object key"""

    relative_path: str
    """Local path relative to the task's working directory"""

    need_transfer: bool = True
    """Whether the object must be uploaded, downloaded or deleted"""

    excluded: bool = False
    """Whether the exclude pattern keeps the object out of the task"""

    @property
    def selected(self) -> bool:
        """Whether the operation has to be performed for this object."""
        return self.need_transfer and not self.excluded


class FileComparator:
    """Decides whether a local file differs from its remote counterpart."""

    def __init__(self, stream: bool = True):
        """Initialize file comparator.

        Args:
            stream: Hash files in chunks instead of reading them at once
        """
        self.stream = stream

    def is_different(
        self,
        file_path: Union[str, Path],
        server_hash: str,
        server_date: ServerDate = None,
        date_compare: Union[DateCompare, str] = DateCompare.OLDER,
    ) -> bool:
        """Check whether a local file differs from the server copy.

        The MD5 hash is authoritative: when it matches, the files are
        identical whatever their dates. When it does not, the result is
        "different" unless a server date is given, in which case the local
        modification time decides.

        Args:
            file_path: Local file
            server_hash: ETag of the server copy (quoted)
            server_date: Last modification date of the server copy
            date_compare: Date policy used when hashes differ

        Returns:
            True if the file needs to be transferred

        Raises:
            LocalFileError: If the file cannot be read or stat'ed
        """
        try:
            local_hash = calculate_etag(file_path, stream=self.stream)
        except OSError as e:
            raise LocalFileError(file_path, e) from e

        if local_hash == server_hash:
            logger.debug("%s is identical (hash %s)", file_path, local_hash)
            return False

        server_timestamp = to_timestamp(server_date)
        if server_timestamp is None:
            return True

        return self.check_file_date(file_path, server_timestamp, date_compare)

    def check_file_date(
        self,
        file_path: Union[str, Path],
        server_timestamp: float,
        date_compare: Union[DateCompare, str] = DateCompare.OLDER,
    ) -> bool:
        """Compare the local modification time with a server timestamp.

        Args:
            file_path: Local file
            server_timestamp: Server modification time (Unix timestamp)
            date_compare: "newer" or "older" (default)

        Returns:
            True if the local file is newer (resp. older) than the server copy

        Raises:
            LocalFileError: If the file cannot be stat'ed
        """
        try:
            local_timestamp = os.stat(file_path).st_mtime
        except OSError as e:
            raise LocalFileError(file_path, e) from e

        logger.debug(
            "%s: local mtime %.0f, server mtime %.0f, policy %s",
            file_path,
            local_timestamp,
            server_timestamp,
            DateCompare(date_compare).value,
        )

        if DateCompare(date_compare) == DateCompare.NEWER:
            return local_timestamp > server_timestamp
        return local_timestamp < server_timestamp


def is_file_different(
    file_path: Union[str, Path],
    server_hash: str,
    server_date: ServerDate = None,
    date_compare: Union[DateCompare, str] = DateCompare.OLDER,
    stream: bool = True,
) -> bool:
    """Shortcut for ``FileComparator(stream).is_different(...)``."""
    return FileComparator(stream=stream).is_different(
        file_path, server_hash, server_date, date_compare
    )
