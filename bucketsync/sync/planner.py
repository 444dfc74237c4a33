"""Planning of sync tasks from declarative specs."""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from ..config import SyncOptions
from ..exceptions import ConfigurationError
from ..utils import PUT_PARAMS, invalid_params
from .matching import Patterns, expand_sources
from .paths import remote_key
from .spec import SyncAction, SyncSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadItem:
    """A single file to upload."""

    local_path: str
    """Path used to read the file"""

    source: str
    """Path relative to the sync entry's working directory"""

    remote_key: str
    """Destination key"""

    params: dict[str, Any] = field(default_factory=dict)
    """PutObject parameters (entry values over defaults)"""

    differential: bool = False
    """Skip the upload when the server copy is identical"""

    need_transfer: bool = True
    """Planned decision; the differ may revise it at execution time"""


@dataclass(frozen=True)
class UploadTask:
    """Consecutive upload specs coalesced into one unit of work."""

    action: ClassVar[SyncAction] = SyncAction.UPLOAD

    files: tuple[UploadItem, ...] = ()

    @property
    def differential(self) -> bool:
        """Whether any item needs the server listing."""
        return any(item.differential for item in self.files)


@dataclass(frozen=True)
class DeleteTask:
    """Delete the objects under a prefix."""

    action: ClassVar[SyncAction] = SyncAction.DELETE

    dest: str
    cwd: Optional[str] = None
    exclude: Optional[Patterns] = None
    flip_exclude: bool = False
    differential: bool = False


@dataclass(frozen=True)
class DownloadTask:
    """Download the objects under a prefix into a directory."""

    action: ClassVar[SyncAction] = SyncAction.DOWNLOAD

    dest: str
    cwd: str
    exclude: Optional[Patterns] = None
    flip_exclude: bool = False
    differential: bool = False


Task = Union[UploadTask, DeleteTask, DownloadTask]


def _listing_prefix(dest: str) -> str:
    # "/" designates the whole bucket
    return "" if dest == "/" else dest


class TaskPlanner:
    """Turns an ordered list of SyncSpecs into an ordered list of Tasks."""

    def __init__(self, options: SyncOptions):
        """Initialize the planner.

        Args:
            options: Global options (default params and differential flag)
        """
        self.options = options

    def plan(self, specs: Iterable[SyncSpec]) -> list[Task]:
        """Plan the tasks of a sync run.

        Consecutive upload specs are merged into a single UploadTask so a
        differential run lists the bucket once per run of uploads.

        Args:
            specs: Specs in declaration order

        Returns:
            Tasks in execution order

        Raises:
            ConfigurationError: If a spec is invalid
        """
        tasks: list[Task] = []
        uploads: list[UploadItem] = []

        def push_uploads() -> None:
            if uploads:
                tasks.append(UploadTask(files=tuple(uploads)))
                uploads.clear()

        for spec in specs:
            if spec.action == SyncAction.DELETE:
                push_uploads()
                tasks.append(self._plan_delete(spec))
            elif spec.action == SyncAction.DOWNLOAD:
                push_uploads()
                tasks.append(self._plan_download(spec))
            else:
                uploads.extend(self._plan_upload(spec))

        push_uploads()

        logger.debug(
            "Planned %d task(s): %s",
            len(tasks),
            ", ".join(t.action.value for t in tasks),
        )
        return tasks

    def _plan_delete(self, spec: SyncSpec) -> DeleteTask:
        if not spec.dest:
            raise ConfigurationError(
                'No "dest" specified for deletion. No need to specify a "src"'
            )

        differential = spec.resolve_differential(self.options.differential)
        if differential and not spec.cwd:
            raise ConfigurationError('Differential delete needs a "cwd"')

        return DeleteTask(
            dest=_listing_prefix(spec.dest),
            cwd=spec.cwd,
            exclude=spec.exclude,
            flip_exclude=spec.flip_exclude,
            differential=differential,
        )

    def _plan_download(self, spec: SyncSpec) -> DownloadTask:
        if not spec.dest:
            raise ConfigurationError('No "dest" specified for downloads')
        if not spec.cwd or spec.source_paths:
            raise ConfigurationError('Specify a "cwd" but not a "src" for downloads')

        return DownloadTask(
            dest=_listing_prefix(spec.dest),
            cwd=spec.cwd,
            exclude=spec.exclude,
            flip_exclude=spec.flip_exclude,
            differential=spec.resolve_differential(self.options.differential),
        )

    def _plan_upload(self, spec: SyncSpec) -> list[UploadItem]:
        bad = invalid_params(spec.params)
        if bad:
            raise ConfigurationError(
                f'Invalid params {", ".join(bad)}: "params" can only be '
                + ", ".join(PUT_PARAMS)
            )

        if spec.exclude:
            logger.warning(
                "Ignoring exclude %r of upload to %r: upload sources are "
                "filtered with '!' patterns",
                spec.exclude,
                spec.dest,
            )

        params = dict(self.options.params)
        params.update(spec.params)
        differential = spec.resolve_differential(self.options.differential)
        dest = spec.dest or ""

        items = []
        for source in expand_sources(spec.source_paths, spec.cwd):
            key = remote_key(source, dest)
            # '.' means that no dest path has been given (root)
            if key is None:
                logger.debug("Skipping %s: no destination", source)
                continue

            local_path = os.path.join(spec.cwd, source) if spec.cwd else source
            items.append(
                UploadItem(
                    local_path=local_path,
                    source=source,
                    remote_key=key,
                    params=params,
                    differential=differential,
                )
            )
        return items


def plan(specs: Iterable[SyncSpec], options: SyncOptions) -> list[Task]:
    """Shortcut for ``TaskPlanner(options).plan(specs)``."""
    return TaskPlanner(options).plan(specs)
