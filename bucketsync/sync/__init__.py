"""Differential sync engine - planning, reconciliation and execution."""

from .comparator import (
    DateCompare,
    FileComparator,
    ReconciliationDecision,
    is_file_different,
)
from .config import load_sync_config, parse_sync_config
from .engine import SyncEngine
from .lister import ObjectLister
from .matching import ExcludeMatcher, expand_sources, is_match, list_local_files
from .outcome import ObjectOutcome, ObjectStatus, TaskOutcome
from .paths import download_path, local_relative_path, remote_key
from .planner import (
    DeleteTask,
    DownloadTask,
    Task,
    TaskPlanner,
    UploadItem,
    UploadTask,
    plan,
)
from .spec import SyncAction, SyncSpec

__all__ = [
    "SyncEngine",
    "SyncAction",
    "SyncSpec",
    "TaskPlanner",
    "plan",
    "Task",
    "UploadItem",
    "UploadTask",
    "DeleteTask",
    "DownloadTask",
    "ObjectLister",
    "FileComparator",
    "DateCompare",
    "ReconciliationDecision",
    "is_file_different",
    "ExcludeMatcher",
    "expand_sources",
    "is_match",
    "list_local_files",
    "ObjectOutcome",
    "ObjectStatus",
    "TaskOutcome",
    "download_path",
    "local_relative_path",
    "remote_key",
    "load_sync_config",
    "parse_sync_config",
]
