"""Configuration management for bucketsync."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .exceptions import ConfigurationError
from .utils import DEFAULT_ACL, DEFAULT_REGION, PUT_PARAMS, invalid_params

logger = logging.getLogger(__name__)

# Option names accepted in config files, mapped to SyncOptions fields
_OPTION_NAMES = {
    "bucket": "bucket",
    "accessKeyId": "access_key_id",
    "secretAccessKey": "secret_access_key",
    "region": "region",
    "endpoint": "endpoint_url",
    "concurrency": "concurrency",
    "uploadConcurrency": "upload_concurrency",
    "downloadConcurrency": "download_concurrency",
    "mime": "mime",
    "params": "params",
    "debug": "debug",
    "differential": "differential",
    "access": "access",
    "mock": "mock",
    "mockRoot": "mock_root",
    "stream": "stream",
    "maxRetries": "max_retries",
}


@dataclass(frozen=True)
class SyncOptions:
    """Global options shared by every task of a sync run.

    Options are passed by value to the planner and the engine; nothing is
    stored in module-level state.
    """

    bucket: str = ""
    """Bucket to synchronize with (required)"""

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    region: Optional[str] = None
    """AWS region; S3 defaults to US Standard when unset"""

    endpoint_url: Optional[str] = None
    """Custom endpoint for S3-compatible services"""

    concurrency: int = 1
    """Default worker count for uploads"""

    upload_concurrency: Optional[int] = None
    """Worker count for uploads (falls back to ``concurrency``)"""

    download_concurrency: int = 1
    """Worker count for downloads (independent of ``concurrency``)"""

    mime: dict[str, str] = field(default_factory=dict)
    """Explicit content types keyed by local path"""

    params: dict[str, Any] = field(default_factory=dict)
    """Default PutObject parameters for every upload"""

    debug: bool = False
    """Dry run: list and decide, but never put, get or delete"""

    differential: bool = False
    """Default for specs that do not set ``differential``"""

    access: str = DEFAULT_ACL
    """Canned ACL of uploaded objects"""

    mock: bool = False
    """Use the filesystem-backed mock store instead of S3"""

    mock_root: Optional[str] = None
    """Directory holding the mock store"""

    stream: bool = True
    """Hash local files in chunks instead of reading them at once"""

    max_retries: int = 0
    """Retries botocore may perform per request"""

    @property
    def effective_upload_concurrency(self) -> int:
        """Worker count used for upload tasks."""
        return self.upload_concurrency or self.concurrency

    @property
    def effective_region(self) -> str:
        """Region passed to the client."""
        return self.region or DEFAULT_REGION

    def validate(self) -> None:
        """Check that the options are complete and consistent.

        Raises:
            ConfigurationError: If a required option is missing or invalid
        """
        if not self.bucket:
            raise ConfigurationError("Missing bucket in options")

        if not (self.mock or self.debug):
            if not self.access_key_id:
                raise ConfigurationError("Missing accessKeyId in options")
            if not self.secret_access_key:
                raise ConfigurationError("Missing secretAccessKey in options")

        for name in ("concurrency", "upload_concurrency", "download_concurrency"):
            value = getattr(self, name)
            if value is None and name == "upload_concurrency":
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(
                    f'"{name}" must be a positive integer, got {value!r}'
                )

        if (
            isinstance(self.max_retries, bool)
            or not isinstance(self.max_retries, int)
            or self.max_retries < 0
        ):
            raise ConfigurationError(
                f'"max_retries" must be a non-negative integer, got {self.max_retries!r}'
            )

        if not isinstance(self.mime, Mapping):
            raise ConfigurationError('"mime" must map file paths to content types')

        if not isinstance(self.params, Mapping):
            raise ConfigurationError('"params" must be a mapping')
        if invalid_params(self.params):
            raise ConfigurationError('"params" can only be ' + ", ".join(PUT_PARAMS))

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SyncOptions":
        """Create options from a config-file mapping.

        Keys use the camelCase names of the config file (``accessKeyId``,
        ``uploadConcurrency``...). Missing credentials, bucket and region
        are read from the environment.

        Args:
            data: Option mapping
            environ: Environment to read defaults from (os.environ by default)

        Raises:
            ConfigurationError: If an option name is unknown
        """
        unknown = [name for name in data if name not in _OPTION_NAMES]
        if unknown:
            raise ConfigurationError(f"Unknown option(s): {', '.join(unknown)}")

        values = {_OPTION_NAMES[name]: value for name, value in data.items()}
        return cls(**values).with_environment(environ)

    def with_environment(
        self, environ: Optional[Mapping[str, str]] = None
    ) -> "SyncOptions":
        """Return a copy with unset values filled from the environment.

        Reads ``AWS_ACCESS_KEY_ID``, ``AWS_SECRET_ACCESS_KEY``,
        ``AWS_REGION`` and ``BUCKETSYNC_BUCKET``.
        """
        env = os.environ if environ is None else environ
        return replace(
            self,
            bucket=self.bucket or env.get("BUCKETSYNC_BUCKET", ""),
            access_key_id=self.access_key_id or env.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=self.secret_access_key
            or env.get("AWS_SECRET_ACCESS_KEY"),
            region=self.region or env.get("AWS_REGION"),
        )
