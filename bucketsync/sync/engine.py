"""Core sync engine for executing sync tasks."""

import errno
import logging
import mimetypes
import threading
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, TypeVar

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..api import StorageClient
from ..config import SyncOptions
from ..exceptions import (
    BucketSyncError,
    LocalFileError,
    StorageError,
    SyncRunError,
    TaskFailedError,
)
from ..models import RemoteObject
from ..output import OutputFormatter
from ..utils import DEFAULT_CONTENT_TYPE, DELETE_BATCH_SIZE
from .comparator import DateCompare, FileComparator, ReconciliationDecision
from .lister import ObjectLister
from .matching import ExcludeMatcher, list_local_files
from .outcome import ObjectStatus, TaskOutcome
from .paths import download_path, is_within, local_relative_path
from .planner import DeleteTask, DownloadTask, Task, UploadItem, UploadTask
from .spec import SyncAction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (status, error message) of one object operation
OperationResult = tuple[ObjectStatus, Optional[str]]


class SyncEngine:
    """Executes planned tasks against an object store.

    Tasks run one at a time, in order. Inside a task, object operations run
    on a bounded thread pool sized by the upload/download concurrency
    options.
    """

    def __init__(
        self,
        client: StorageClient,
        options: SyncOptions,
        output: Optional[OutputFormatter] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Object store client, shared by all workers
            options: Global sync options
            output: Output formatter for displaying progress/status
        """
        self.client = client
        self.options = options
        self.output = output or OutputFormatter()
        self.lister = ObjectLister(client)
        self.comparator = FileComparator(stream=options.stream)

    @property
    def dry_run(self) -> bool:
        return self.options.debug

    # =========================================================================
    # Run
    # =========================================================================

    def run(self, tasks: Iterable[Task]) -> list[TaskOutcome]:
        """Execute tasks sequentially and report each of them.

        Args:
            tasks: Planned tasks

        Returns:
            One TaskOutcome per task

        Raises:
            SyncRunError: If a task fails; later tasks are not executed and
                the effects of earlier ones are kept
        """
        outcomes: list[TaskOutcome] = []

        for task in tasks:
            try:
                outcome = self.execute(task)
            except BucketSyncError as e:
                raise SyncRunError(
                    f"{task.action.value.capitalize()} failed: {e}", outcomes
                ) from e

            outcomes.append(outcome)
            self._display_task(outcome)

            if not outcome.succeeded:
                error = TaskFailedError(outcome)
                raise SyncRunError(str(error), outcomes) from error

        self._display_summary(outcomes)
        return outcomes

    def execute(self, task: Task) -> TaskOutcome:
        """Execute a single task.

        Raises:
            ListingError: If the bucket cannot be listed
        """
        start = time.time()
        if isinstance(task, DeleteTask):
            outcome = self.delete_objects(task)
        elif isinstance(task, DownloadTask):
            outcome = self.download_objects(task)
        elif isinstance(task, UploadTask):
            outcome = self.upload_objects(task)
        else:
            raise TypeError(f"Unknown task type: {type(task).__name__}")

        logger.debug(
            "%s task finished in %.2fs: %d/%d transferred, %d failed",
            task.action.value,
            time.time() - start,
            outcome.transferred,
            outcome.total,
            outcome.failed,
        )
        return outcome

    def _new_outcome(self, action: SyncAction, dest: str = "", cwd=None) -> TaskOutcome:
        return TaskOutcome(
            action=action,
            bucket=self.client.bucket,
            dest=dest,
            cwd=cwd,
            dry_run=self.dry_run,
        )

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_objects(self, task: DeleteTask) -> TaskOutcome:
        """Delete the objects under ``task.dest``.

        In differential mode only objects without a local counterpart under
        ``task.cwd`` are deleted. Candidates are deleted in batches of at
        most 1000 keys, all batches in parallel. A failed batch does not
        undo the others; the task is then reported as failed.
        """
        self.output.info(f"Deleting the content of {self.client.object_url(task.dest)}")

        objects = self._list(task.dest)
        local_files = list_local_files(task.cwd) if task.differential else set()
        matcher = ExcludeMatcher(task.exclude, task.flip_exclude)

        decisions = []
        for obj in objects:
            relative_path = local_relative_path(obj.key, task.dest)
            excluded = matcher.is_excluded(obj.key)
            need_delete = True
            if task.differential and not excluded:
                need_delete = relative_path not in local_files
            decisions.append(
                ReconciliationDecision(obj.key, relative_path, need_delete, excluded)
            )

        candidates = [d.key for d in decisions if d.selected]
        logger.debug(
            "%d of %d object(s) under %r selected for deletion",
            len(candidates),
            len(objects),
            task.dest,
        )

        results: dict[str, OperationResult] = {}
        if candidates and not self.dry_run:
            results = dict(zip(candidates, self.delete_in_batches(candidates)))

        outcome = self._new_outcome(SyncAction.DELETE, task.dest, task.cwd)
        for decision in decisions:
            if decision.excluded:
                outcome.record(decision.key, ObjectStatus.EXCLUDED)
            elif not decision.need_transfer:
                outcome.record(decision.key, ObjectStatus.SKIPPED)
            else:
                status, error = results.get(decision.key, (ObjectStatus.TRANSFERRED, None))
                outcome.record(decision.key, status, error=error)
        return outcome

    def delete_in_batches(self, keys: list[str]) -> list[OperationResult]:
        """Delete keys in slices of at most 1000, submitted concurrently.

        Args:
            keys: Keys to delete

        Returns:
            One (status, error) pair per key, in the order of ``keys``
        """
        slices = [
            (start, keys[start : start + DELETE_BATCH_SIZE])
            for start in range(0, len(keys), DELETE_BATCH_SIZE)
        ]
        results: list[OperationResult] = [(ObjectStatus.TRANSFERRED, None)] * len(keys)
        logger.debug("Deleting %d key(s) in %d batch(es)", len(keys), len(slices))

        with ThreadPoolExecutor(max_workers=len(slices)) as executor:
            futures = {
                executor.submit(self.client.delete_objects, batch): (start, batch)
                for start, batch in slices
            }

            for future in as_completed(futures):
                start, batch = futures[future]
                try:
                    result = future.result()
                except StorageError as e:
                    failed = {f["key"]: f["message"] for f in getattr(e, "failed", [])}
                    logger.debug("Batch at %d failed: %s", start, e)
                    for offset, key in enumerate(batch):
                        results[start + offset] = (
                            ObjectStatus.FAILED,
                            failed.get(key, str(e)),
                        )
                    continue

                errors = {err["key"]: err["message"] for err in result.errors}
                for offset, key in enumerate(batch):
                    if key in errors:
                        results[start + offset] = (ObjectStatus.FAILED, errors[key])
                logger.debug(
                    "Batch at %d: %d deleted, %d error(s)",
                    start,
                    len(batch) - len(errors),
                    len(errors),
                )

        return results

    # =========================================================================
    # Download
    # =========================================================================

    def download_objects(self, task: DownloadTask) -> TaskOutcome:
        """Download the objects under ``task.dest`` into ``task.cwd``.

        In differential mode, files that exist locally are only downloaded
        when their hash differs and the local copy is older than the server
        copy.
        """
        self.output.info(
            f"Downloading the content of {self.client.object_url(task.dest)} "
            f"to {task.cwd}"
        )

        objects = self._list(task.dest)
        local_files = list_local_files(task.cwd) if task.differential else set()
        matcher = ExcludeMatcher(task.exclude, task.flip_exclude)

        decisions = []
        for obj in objects:
            relative_path = local_relative_path(obj.key, task.dest)
            # No need to write directories
            need_download = relative_path != "" and not obj.is_directory_marker
            decisions.append(
                ReconciliationDecision(
                    obj.key,
                    relative_path,
                    need_download,
                    matcher.is_excluded(obj.key),
                )
            )

        def download(pair: tuple[RemoteObject, ReconciliationDecision]) -> ObjectStatus:
            obj, decision = pair
            local_path = download_path(task.cwd, decision.relative_path)
            if not is_within(task.cwd, local_path):
                raise LocalFileError(
                    local_path,
                    OSError(errno.EACCES, "Outside of the download directory"),
                )

            if task.differential and decision.relative_path in local_files:
                if not self.comparator.is_different(
                    local_path, obj.etag, obj.last_modified, DateCompare.OLDER
                ):
                    return ObjectStatus.SKIPPED

            if self.dry_run:
                return ObjectStatus.TRANSFERRED

            body = self.client.get_object(obj.key)
            try:
                path = Path(local_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(body)
            except OSError as e:
                raise LocalFileError(local_path, e) from e
            logger.debug("Downloaded %s to %s", obj.key, local_path)
            return ObjectStatus.TRANSFERRED

        selected = [(o, d) for o, d in zip(objects, decisions) if d.selected]
        results = dict(
            zip(
                [d.key for _, d in selected],
                self._run_pool(
                    selected,
                    download,
                    self.options.download_concurrency,
                    "Downloading",
                ),
            )
        )

        outcome = self._new_outcome(SyncAction.DOWNLOAD, task.dest, task.cwd)
        for decision in decisions:
            local_path = download_path(task.cwd, decision.relative_path)
            if decision.excluded:
                outcome.record(decision.key, ObjectStatus.EXCLUDED, local_path)
            elif not decision.need_transfer:
                outcome.record(decision.key, ObjectStatus.SKIPPED, local_path)
            else:
                status, error = results[decision.key]
                outcome.record(decision.key, status, local_path, error)
        return outcome

    # =========================================================================
    # Upload
    # =========================================================================

    def upload_objects(self, task: UploadTask) -> TaskOutcome:
        """Upload the files of a task.

        When any item is differential the whole bucket is listed once for
        the task, and items whose server copy has the same hash are skipped.
        """
        self.output.info(f"Uploading to {self.client.object_url()}")

        server_files: dict[str, RemoteObject] = {}
        if task.differential:
            server_files = {o.key: o for o in self._list("")}

        def upload(item: UploadItem) -> ObjectStatus:
            server_file = server_files.get(item.remote_key)
            need_upload = item.need_transfer
            if server_file is not None and item.differential:
                need_upload = self.comparator.is_different(
                    item.local_path, server_file.etag
                )

            if not need_upload:
                return ObjectStatus.SKIPPED
            if self.dry_run:
                return ObjectStatus.TRANSFERRED

            try:
                body = Path(item.local_path).read_bytes()
            except OSError as e:
                raise LocalFileError(item.local_path, e) from e

            params = {k: v for k, v in item.params.items() if k != "ContentType"}
            self.client.put_object(
                item.remote_key,
                body,
                self.content_type(item),
                self.options.access,
                params,
            )
            logger.debug("Uploaded %s to %s", item.local_path, item.remote_key)
            return ObjectStatus.TRANSFERRED

        results = self._run_pool(
            list(task.files),
            upload,
            self.options.effective_upload_concurrency,
            "Uploading",
        )

        outcome = self._new_outcome(SyncAction.UPLOAD)
        for item, (status, error) in zip(task.files, results):
            outcome.record(item.remote_key, status, item.local_path, error)
        return outcome

    def content_type(self, item: UploadItem) -> str:
        """Content type of an upload.

        Explicit ``mime`` option first, then the item's ContentType
        parameter, then a guess from the file name.
        """
        mime = self.options.mime
        explicit = mime.get(item.local_path) or mime.get(item.source)
        if explicit:
            return explicit
        if item.params.get("ContentType"):
            return item.params["ContentType"]
        guessed, _ = mimetypes.guess_type(item.local_path)
        return guessed or DEFAULT_CONTENT_TYPE

    # =========================================================================
    # Helpers
    # =========================================================================

    def _list(self, prefix: str) -> list[RemoteObject]:
        with self._spinner(f"Listing {self.client.object_url(prefix)}..."):
            return self.lister.list(prefix)

    def _run_pool(
        self,
        items: list[T],
        operation: Callable[[T], ObjectStatus],
        max_workers: int,
        description: str,
    ) -> list[OperationResult]:
        """Run an operation on every item with a bounded thread pool.

        Errors do not interrupt operations already running, but once one
        operation has failed the items that have not started yet are
        recorded as cancelled.

        Returns:
            One (status, error) pair per item, in the order of ``items``
        """
        if not items:
            return []

        done = threading.Event()
        results: list[OperationResult] = [(ObjectStatus.CANCELLED, None)] * len(items)

        def guarded(item: T) -> OperationResult:
            if done.is_set():
                return ObjectStatus.CANCELLED, None
            try:
                return operation(item), None
            except (StorageError, LocalFileError) as e:
                done.set()
                return ObjectStatus.FAILED, str(e)

        logger.debug("Processing %d object(s) with %d worker(s)", len(items), max_workers)

        with self._progress(description, len(items)) as advance:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(guarded, item): index
                    for index, item in enumerate(items)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    advance()

        return results

    @contextmanager
    def _spinner(self, description: str) -> Iterator[None]:
        if self.output.quiet or self.output.json_output:
            yield
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=self.output.console,
        ) as progress:
            progress.add_task(description, total=None)
            yield

    @contextmanager
    def _progress(self, description: str, total: int) -> Iterator[Callable[[], None]]:
        if self.output.quiet or self.output.json_output:
            yield lambda: None
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            transient=True,
            console=self.output.console,
        ) as progress:
            task_id = progress.add_task(description, total=total)
            yield lambda: progress.advance(task_id)

    # =========================================================================
    # Reporting
    # =========================================================================

    def _display_task(self, outcome: TaskOutcome) -> None:
        """Display the per-object status lines of a task."""
        if self.output.quiet:
            return

        if outcome.total == 0:
            verb = {
                SyncAction.DELETE: "delete",
                SyncAction.DOWNLOAD: "download",
                SyncAction.UPLOAD: "upload",
            }[outcome.action]
            self.output.info(f"Nothing to {verb}")
            self.output.print("")
            return

        self.output.print("")
        self.output.info(f"List: ({outcome.total} objects):")

        for o in outcome.outcomes:
            url = self.client.object_url(o.key)
            if outcome.action == SyncAction.DELETE:
                sign, target = "- ", o.key
            elif outcome.action == SyncAction.DOWNLOAD:
                sign, target = "- ", f"{url} -> {o.local_path}"
                if o.status == ObjectStatus.EXCLUDED:
                    target = f"{url} =/= {o.local_path}"
                elif o.status == ObjectStatus.SKIPPED:
                    target = f"{url} === {o.local_path}"
            else:
                sign, target = "- ", f"{o.local_path} -> {url}"
                if o.status == ObjectStatus.SKIPPED:
                    target = f"{o.local_path} === {url}"

            if o.status == ObjectStatus.TRANSFERRED:
                self.output.print(f"{sign}{target}", style="cyan")
            elif o.status == ObjectStatus.EXCLUDED:
                if outcome.action == SyncAction.DELETE:
                    sign = "! "
                self.output.print(f"{sign}{target}", style="yellow")
            elif o.status == ObjectStatus.SKIPPED:
                self.output.print(f"{sign}{target}", style="yellow")
            elif o.status == ObjectStatus.FAILED:
                self.output.print(f"x {target}: {o.error}", style="red")
            else:
                self.output.print(f"? {target} (cancelled)", style="dim")

        self.output.print("")

    def _display_summary(self, outcomes: list[TaskOutcome]) -> None:
        """Display one summary line per task."""
        if self.output.quiet:
            return
        for outcome in outcomes:
            self.output.success(outcome.summary_line())
        if self.dry_run:
            self.output.warning(
                "\nThe debug option was enabled, no changes have actually been made"
            )
