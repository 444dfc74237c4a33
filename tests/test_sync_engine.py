"""Tests for the sync engine."""

import os
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from bucketsync.api import MockClient
from bucketsync.config import SyncOptions
from bucketsync.exceptions import DeleteError, StorageError, SyncRunError, TransferError
from bucketsync.models import DeleteObjectsResult, ListObjectsPage, RemoteObject
from bucketsync.output import OutputFormatter
from bucketsync.sync import (
    DeleteTask,
    DownloadTask,
    ObjectStatus,
    SyncAction,
    SyncEngine,
    SyncSpec,
    UploadItem,
    UploadTask,
    plan,
)
from bucketsync.utils import calculate_bytes_etag


class BatchStore:
    """Store holding many keys, recording batch delete requests."""

    def __init__(self, keys, failing=()):
        self.bucket = "my-bucket"
        self.keys = list(keys)
        self.failing = set(failing)
        self.batches = []
        self._lock = threading.Lock()

    def object_url(self, key=""):
        return f"mock://{self.bucket}/{key}"

    def list_objects(self, prefix, marker=None):
        keys = [k for k in self.keys if k.startswith(prefix)]
        start = keys.index(marker) + 1 if marker else 0
        page = keys[start : start + 1000]
        return ListObjectsPage(
            objects=[RemoteObject(k, '"etag"') for k in page],
            is_truncated=start + 1000 < len(keys),
        )

    def delete_objects(self, keys):
        with self._lock:
            self.batches.append(list(keys))
        errors = [{"key": k, "message": "AccessDenied"} for k in keys if k in self.failing]
        failed = {e["key"] for e in errors}
        return DeleteObjectsResult(
            deleted=[k for k in keys if k not in failed], errors=errors
        )


@pytest.fixture
def mock_output():
    """Create a mock output formatter."""
    output = Mock(spec=OutputFormatter)
    output.quiet = True  # Suppress output during tests
    output.json_output = False
    return output


@pytest.fixture
def local_dir(tmp_path):
    path = tmp_path / "local"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path):
    """Create a filesystem-backed store."""
    return MockClient("my-bucket", tmp_path / "store")


@pytest.fixture
def options():
    return SyncOptions(bucket="my-bucket", mock=True)


def put(client, key, data):
    client.put_object(key, data, "text/plain", "", {})


def statuses(outcome):
    return {o.key: o.status for o in outcome.outcomes}


class TestSyncEngine:
    """Test SyncEngine construction and dispatch."""

    def test_create_sync_engine(self, store, options, mock_output):
        engine = SyncEngine(store, options, mock_output)
        assert engine.client is store
        assert engine.output is mock_output
        assert not engine.dry_run

    def test_default_output(self, store, options):
        engine = SyncEngine(store, options)
        assert isinstance(engine.output, OutputFormatter)

    def test_unknown_task_type(self, store, options, mock_output):
        with pytest.raises(TypeError):
            SyncEngine(store, options, mock_output).execute(object())


class TestDelete:
    """Tests for delete tasks."""

    def test_delete_prefix(self, store, options, mock_output):
        put(store, "site/a.txt", b"a")
        put(store, "site/sub/b.txt", b"b")
        put(store, "keep/c.txt", b"c")
        engine = SyncEngine(store, options, mock_output)

        outcome = engine.execute(DeleteTask(dest="site/"))

        assert outcome.action == SyncAction.DELETE
        assert outcome.transferred == 2
        assert outcome.summary_line() == "2/2 objects deleted from my-bucket/site/"
        assert [o.key for o in store.list_objects("").objects] == ["keep/c.txt"]

    def test_batches_of_1000(self, mock_output, options):
        """2500 deletions are sent as three concurrent batches."""
        keys = [f"site/{i:04d}" for i in range(2500)]
        client = BatchStore(keys, failing={"site/1100", "site/1900"})
        engine = SyncEngine(client, options, mock_output)

        outcome = engine.execute(DeleteTask(dest="site/"))

        assert sorted(len(b) for b in client.batches) == [500, 1000, 1000]
        assert outcome.transferred == 2498
        assert outcome.failed == 2
        assert outcome.failed_keys == ["site/1100", "site/1900"]
        assert [o.key for o in outcome.outcomes] == keys
        failed = [o for o in outcome.outcomes if o.status == ObjectStatus.FAILED]
        assert all(o.error == "AccessDenied" for o in failed)

    def test_failed_batch_does_not_undo_others(self, mock_output, options):
        keys = [f"k{i:04d}" for i in range(1500)]
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.side_effect = BatchStore(keys).list_objects

        def delete_objects(batch):
            if batch[0] == "k1000":
                raise DeleteError(
                    "InternalError",
                    failed=[{"key": k, "message": "InternalError"} for k in batch],
                )
            return DeleteObjectsResult(deleted=list(batch))

        client.delete_objects.side_effect = delete_objects
        engine = SyncEngine(client, options, mock_output)

        outcome = engine.execute(DeleteTask(dest=""))

        assert outcome.transferred == 1000
        assert outcome.failed == 500
        assert not outcome.succeeded

    def test_exclude(self, store, options, mock_output):
        put(store, "site/a.tmp", b"a")
        put(store, "site/b.html", b"b")
        engine = SyncEngine(store, options, mock_output)

        outcome = engine.execute(DeleteTask(dest="site/", exclude="*.tmp"))

        assert statuses(outcome) == {
            "site/a.tmp": ObjectStatus.EXCLUDED,
            "site/b.html": ObjectStatus.TRANSFERRED,
        }
        assert [o.key for o in store.list_objects("").objects] == ["site/a.tmp"]

    def test_flip_exclude(self, store, options, mock_output):
        """Only keys matching the pattern are deleted."""
        put(store, "site/a.tmp", b"a")
        put(store, "site/b.html", b"b")
        put(store, "site/cache/c.tmp", b"c")
        engine = SyncEngine(store, options, mock_output)

        outcome = engine.execute(
            DeleteTask(dest="site/", exclude="*.tmp", flip_exclude=True)
        )

        assert outcome.transferred == 2
        assert outcome.excluded == 1
        assert [o.key for o in store.list_objects("").objects] == ["site/b.html"]

    def test_differential(self, store, options, mock_output, local_dir):
        """Objects with a local counterpart are kept."""
        (local_dir / "a.txt").write_text("a")
        put(store, "site/a.txt", b"a")
        put(store, "site/b.txt", b"b")
        engine = SyncEngine(store, options, mock_output)

        outcome = engine.execute(
            DeleteTask(dest="site/", cwd=str(local_dir), differential=True)
        )

        assert statuses(outcome) == {
            "site/a.txt": ObjectStatus.SKIPPED,
            "site/b.txt": ObjectStatus.TRANSFERRED,
        }
        assert [o.key for o in store.list_objects("").objects] == ["site/a.txt"]

    def test_nothing_to_delete(self, store, options, mock_output):
        outcome = SyncEngine(store, options, mock_output).execute(
            DeleteTask(dest="site/")
        )
        assert outcome.total == 0
        assert outcome.succeeded

    def test_dry_run(self, store, mock_output):
        put(store, "site/a.txt", b"a")
        options = SyncOptions(bucket="my-bucket", mock=True, debug=True)

        outcome = SyncEngine(store, options, mock_output).execute(
            DeleteTask(dest="site/")
        )

        assert outcome.dry_run
        assert outcome.transferred == 1
        assert [o.key for o in store.list_objects("").objects] == ["site/a.txt"]


class TestUpload:
    """Tests for upload tasks."""

    def test_differential_upload_end_to_end(self, store, options, mock_output, local_dir):
        """Identical files are skipped, new ones uploaded."""
        (local_dir / "a.txt").write_bytes(b"same")
        (local_dir / "b.txt").write_bytes(b"new")
        put(store, "site/a.txt", b"same")
        spec = SyncSpec(
            SyncAction.UPLOAD,
            ("a.txt", "b.txt"),
            dest="site/",
            cwd=str(local_dir),
            differential=True,
        )

        tasks = plan([spec], options)
        assert len(tasks[0].files) == 2

        outcomes = SyncEngine(store, options, mock_output).run(tasks)

        outcome = outcomes[0]
        assert statuses(outcome) == {
            "site/a.txt": ObjectStatus.SKIPPED,
            "site/b.txt": ObjectStatus.TRANSFERRED,
        }
        assert outcome.summary_line() == "1/2 objects uploaded to bucket my-bucket/"
        assert store.get_object("site/b.txt") == b"new"

    def test_changed_file_uploaded(self, store, options, mock_output, local_dir):
        (local_dir / "a.txt").write_bytes(b"changed")
        put(store, "site/a.txt", b"original")
        item = UploadItem(
            str(local_dir / "a.txt"), "a.txt", "site/a.txt", differential=True
        )

        outcome = SyncEngine(store, options, mock_output).execute(UploadTask((item,)))

        assert outcome.transferred == 1
        assert store.get_object("site/a.txt") == b"changed"

    def test_put_arguments(self, options, mock_output, local_dir):
        """Content type, ACL and params are passed to the client."""
        (local_dir / "a.txt").write_text("a")
        client = Mock()
        client.bucket = "my-bucket"
        item = UploadItem(
            str(local_dir / "a.txt"),
            "a.txt",
            "site/a.txt",
            params={"CacheControl": "max-age=60"},
        )

        SyncEngine(client, options, mock_output).execute(UploadTask((item,)))

        client.put_object.assert_called_once_with(
            "site/a.txt",
            b"a",
            "text/plain",
            "public-read",
            {"CacheControl": "max-age=60"},
        )
        client.list_objects.assert_not_called()

    def test_content_type_resolution(self, mock_output):
        options = SyncOptions(
            bucket="my-bucket", mock=True, mime={"data/feed": "application/rss+xml"}
        )
        engine = SyncEngine(Mock(), options, mock_output)

        assert engine.content_type(UploadItem("data/feed", "feed", "k")) == (
            "application/rss+xml"
        )
        assert (
            engine.content_type(
                UploadItem("a.txt", "a.txt", "k", params={"ContentType": "text/x"})
            )
            == "text/x"
        )
        assert engine.content_type(UploadItem("index.html", "index.html", "k")) == (
            "text/html"
        )
        assert engine.content_type(UploadItem("blob", "blob", "k")) == (
            "application/octet-stream"
        )

    def test_content_type_param_not_forwarded(self, options, mock_output, local_dir):
        (local_dir / "a.bin").write_bytes(b"\x00")
        client = Mock()
        client.bucket = "my-bucket"
        item = UploadItem(
            str(local_dir / "a.bin"),
            "a.bin",
            "a.bin",
            params={"ContentType": "image/png", "CacheControl": "no-cache"},
        )

        SyncEngine(client, options, mock_output).execute(UploadTask((item,)))

        args = client.put_object.call_args[0]
        assert args[2] == "image/png"
        assert args[4] == {"CacheControl": "no-cache"}

    def test_missing_local_file_fails(self, options, mock_output, tmp_path):
        client = Mock()
        client.bucket = "my-bucket"
        item = UploadItem(str(tmp_path / "missing.txt"), "missing.txt", "missing.txt")

        outcome = SyncEngine(client, options, mock_output).execute(UploadTask((item,)))

        assert outcome.failed == 1
        assert "missing.txt" in outcome.outcomes[0].error
        client.put_object.assert_not_called()

    def test_failure_cancels_pending_items(self, options, mock_output, local_dir):
        """After a failure, items not yet started are not attempted."""
        items = []
        for name in ("a.txt", "b.txt", "c.txt"):
            (local_dir / name).write_text(name)
            items.append(UploadItem(str(local_dir / name), name, f"site/{name}"))
        client = Mock()
        client.bucket = "my-bucket"
        client.put_object.side_effect = TransferError("SlowDown", "site/a.txt")

        outcome = SyncEngine(client, options, mock_output).execute(
            UploadTask(tuple(items))
        )

        assert [o.status for o in outcome.outcomes] == [
            ObjectStatus.FAILED,
            ObjectStatus.CANCELLED,
            ObjectStatus.CANCELLED,
        ]
        assert client.put_object.call_count == 1

    def test_concurrent_uploads(self, store, mock_output, local_dir):
        options = SyncOptions(bucket="my-bucket", mock=True, concurrency=4)
        items = []
        for i in range(20):
            (local_dir / f"{i}.txt").write_text(str(i))
            items.append(UploadItem(str(local_dir / f"{i}.txt"), f"{i}.txt", f"up/{i}.txt"))

        outcome = SyncEngine(store, options, mock_output).execute(UploadTask(tuple(items)))

        assert outcome.transferred == 20
        assert [o.key for o in outcome.outcomes] == [i.remote_key for i in items]
        assert len(store.list_objects("up/").objects) == 20

    def test_dry_run(self, store, mock_output, local_dir):
        (local_dir / "a.txt").write_text("a")
        options = SyncOptions(bucket="my-bucket", mock=True, debug=True)
        item = UploadItem(str(local_dir / "a.txt"), "a.txt", "site/a.txt")

        outcome = SyncEngine(store, options, mock_output).execute(UploadTask((item,)))

        assert outcome.transferred == 1
        assert store.list_objects("").objects == []


class TestDownload:
    """Tests for download tasks."""

    def test_download(self, store, options, mock_output, local_dir):
        put(store, "site/a.txt", b"a")
        put(store, "site/sub/b.txt", b"b")

        outcome = SyncEngine(store, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir))
        )

        assert outcome.transferred == 2
        assert (local_dir / "a.txt").read_bytes() == b"a"
        assert (local_dir / "sub" / "b.txt").read_bytes() == b"b"
        assert outcome.summary_line() == (
            f"2/2 objects downloaded from my-bucket/site/ to {local_dir}"
        )

    def test_directory_markers_skipped(self, options, mock_output, local_dir):
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.return_value = ListObjectsPage(
            [
                RemoteObject("site/", '"d"'),
                RemoteObject("site/dir/", '"d"'),
                RemoteObject("site/a.txt", calculate_bytes_etag(b"a")),
            ]
        )
        client.get_object.return_value = b"a"

        outcome = SyncEngine(client, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir))
        )

        assert statuses(outcome) == {
            "site/": ObjectStatus.SKIPPED,
            "site/dir/": ObjectStatus.SKIPPED,
            "site/a.txt": ObjectStatus.TRANSFERRED,
        }
        client.get_object.assert_called_once_with("site/a.txt")

    def test_differential(self, store, options, mock_output, local_dir):
        """Identical and locally newer files are not downloaded."""
        put(store, "site/same.txt", b"same")
        put(store, "site/newer.txt", b"server")
        put(store, "site/older.txt", b"server")
        put(store, "site/absent.txt", b"server")
        (local_dir / "same.txt").write_bytes(b"same")
        (local_dir / "newer.txt").write_bytes(b"local")
        (local_dir / "older.txt").write_bytes(b"local")
        os.utime(local_dir / "newer.txt", (4000000000, 4000000000))
        os.utime(local_dir / "older.txt", (1000, 1000))

        outcome = SyncEngine(store, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir), differential=True)
        )

        assert statuses(outcome) == {
            "site/absent.txt": ObjectStatus.TRANSFERRED,
            "site/newer.txt": ObjectStatus.SKIPPED,
            "site/older.txt": ObjectStatus.TRANSFERRED,
            "site/same.txt": ObjectStatus.SKIPPED,
        }
        assert (local_dir / "older.txt").read_bytes() == b"server"
        assert (local_dir / "newer.txt").read_bytes() == b"local"

    def test_exclude(self, store, options, mock_output, local_dir):
        put(store, "site/a.txt", b"a")
        put(store, "site/b.log", b"b")

        outcome = SyncEngine(store, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir), exclude="*.log")
        )

        assert outcome.excluded == 1
        assert not (local_dir / "b.log").exists()
        assert outcome.outcomes[1].local_path == os.path.join(str(local_dir), "b.log")

    def test_get_failure(self, options, mock_output, local_dir):
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.return_value = ListObjectsPage(
            [RemoteObject("site/a.txt", '"x"')]
        )
        client.get_object.side_effect = TransferError("NoSuchKey", "site/a.txt")

        outcome = SyncEngine(client, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir))
        )

        assert outcome.failed == 1
        assert outcome.outcomes[0].error == "NoSuchKey"
        assert not Path(local_dir / "a.txt").exists()

    def test_absolute_key_written_under_cwd(self, options, mock_output, local_dir, tmp_path):
        """A key whose relative path starts with '/' is not an absolute target."""
        outside = tmp_path / "outside.txt"
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.return_value = ListObjectsPage(
            [RemoteObject("site/" + outside.as_posix(), '"x"')]
        )
        client.get_object.return_value = b"x"

        outcome = SyncEngine(client, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir))
        )

        assert outcome.transferred == 1
        assert not outside.exists()
        assert (local_dir / outside.as_posix().lstrip("/")).read_bytes() == b"x"

    def test_parent_reference_fails(self, options, mock_output, local_dir, tmp_path):
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.return_value = ListObjectsPage(
            [RemoteObject("site/../escape.txt", '"x"')]
        )
        client.get_object.return_value = b"x"

        outcome = SyncEngine(client, options, mock_output).execute(
            DownloadTask(dest="site/", cwd=str(local_dir))
        )

        assert outcome.failed == 1
        assert "Outside of the download directory" in outcome.outcomes[0].error
        assert not (tmp_path / "escape.txt").exists()
        client.get_object.assert_not_called()


class TestRun:
    """Tests for running several tasks."""

    def test_tasks_run_in_order(self, store, options, mock_output, local_dir):
        (local_dir / "a.txt").write_text("a")
        put(store, "old/x.txt", b"x")
        tasks = [
            DeleteTask(dest="old/"),
            UploadTask((UploadItem(str(local_dir / "a.txt"), "a.txt", "site/a.txt"),)),
        ]

        outcomes = SyncEngine(store, options, mock_output).run(tasks)

        assert [o.action for o in outcomes] == [SyncAction.DELETE, SyncAction.UPLOAD]
        assert [o.key for o in store.list_objects("").objects] == ["site/a.txt"]

    def test_failed_task_aborts_run(self, options, mock_output, local_dir):
        """Tasks after a failed one are not executed."""
        (local_dir / "a.txt").write_text("a")
        client = Mock()
        client.bucket = "my-bucket"
        client.put_object.side_effect = TransferError("SlowDown", "site/a.txt")
        tasks = [
            UploadTask((UploadItem(str(local_dir / "a.txt"), "a.txt", "site/a.txt"),)),
            DeleteTask(dest="old/"),
        ]

        with pytest.raises(SyncRunError) as exc_info:
            SyncEngine(client, options, mock_output).run(tasks)

        assert "Upload failed for 1 object(s): site/a.txt" in str(exc_info.value)
        assert len(exc_info.value.outcomes) == 1
        client.list_objects.assert_not_called()

    def test_listing_failure_aborts_run(self, options, mock_output):
        client = Mock()
        client.bucket = "my-bucket"
        client.list_objects.side_effect = StorageError("Access Denied")

        with pytest.raises(SyncRunError) as exc_info:
            SyncEngine(client, options, mock_output).run([DeleteTask(dest="site/")])

        assert str(exc_info.value).startswith("Delete failed: Failed to list content")
        assert exc_info.value.outcomes == []
        client.delete_objects.assert_not_called()

    def test_summary_displayed(self, store, options, local_dir):
        output = Mock(spec=OutputFormatter)
        output.quiet = False
        output.json_output = True
        (local_dir / "a.txt").write_text("a")
        task = UploadTask((UploadItem(str(local_dir / "a.txt"), "a.txt", "a.txt"),))

        SyncEngine(store, options, output).run([task])

        output.success.assert_called_once_with("1/1 objects uploaded to bucket my-bucket/")
        output.warning.assert_not_called()

    def test_dry_run_warning(self, store, local_dir):
        output = Mock(spec=OutputFormatter)
        output.quiet = False
        output.json_output = True
        options = SyncOptions(bucket="my-bucket", mock=True, debug=True)

        SyncEngine(store, options, output).run([DeleteTask(dest="site/")])

        output.warning.assert_called_once()
        assert "no changes have actually been made" in output.warning.call_args[0][0]
