"""Aggregation of per-object results into task summaries."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .spec import SyncAction


class ObjectStatus(str, Enum):
    """Result of processing one object."""

    TRANSFERRED = "transferred"
    """Uploaded, downloaded or deleted (or would be, in a dry run)"""

    SKIPPED = "skipped"
    """Nothing to do, e.g. identical on both sides"""

    EXCLUDED = "excluded"
    """Left alone because of the exclude pattern"""

    FAILED = "failed"
    """The operation failed"""

    CANCELLED = "cancelled"
    """Not attempted because a sibling operation failed first"""


@dataclass
class ObjectOutcome:
    """Result for a single object."""

    key: str
    """Object key"""

    status: ObjectStatus
    """What happened"""

    local_path: Optional[str] = None
    """Local counterpart of the object, if any"""

    error: Optional[str] = None
    """Error message for failed objects"""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"key": self.key, "status": self.status.value}
        if self.local_path is not None:
            result["local_path"] = self.local_path
        if self.error is not None:
            result["error"] = self.error
        return result


_VERBS = {
    SyncAction.UPLOAD: "uploaded",
    SyncAction.DOWNLOAD: "downloaded",
    SyncAction.DELETE: "deleted",
}


@dataclass
class TaskOutcome:
    """Collected results of one task.

    Outcomes keep the order of the task's candidates, not the order in
    which workers finished.
    """

    action: SyncAction
    bucket: str = ""
    dest: str = ""
    cwd: Optional[str] = None
    dry_run: bool = False
    outcomes: list[ObjectOutcome] = field(default_factory=list)

    def record(
        self,
        key: str,
        status: ObjectStatus,
        local_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ObjectOutcome:
        """Append the outcome of one object."""
        outcome = ObjectOutcome(key, status, local_path, error)
        self.outcomes.append(outcome)
        return outcome

    def count(self, status: ObjectStatus) -> int:
        """Number of objects with the given status."""
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def transferred(self) -> int:
        return self.count(ObjectStatus.TRANSFERRED)

    @property
    def skipped(self) -> int:
        return self.count(ObjectStatus.SKIPPED)

    @property
    def excluded(self) -> int:
        return self.count(ObjectStatus.EXCLUDED)

    @property
    def failed(self) -> int:
        return self.count(ObjectStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return self.count(ObjectStatus.CANCELLED)

    @property
    def succeeded(self) -> bool:
        """True when no object failed."""
        return self.failed == 0

    @property
    def failed_keys(self) -> list[str]:
        return [o.key for o in self.outcomes if o.status == ObjectStatus.FAILED]

    def summary_line(self) -> str:
        """One-line summary, e.g. ``1/2 objects uploaded to bucket site/``."""
        counts = f"{self.transferred}/{self.total} objects {_VERBS[self.action]}"
        if self.action == SyncAction.UPLOAD:
            return f"{counts} to bucket {self.bucket}/"
        if self.action == SyncAction.DOWNLOAD:
            return f"{counts} from {self.bucket}/{self.dest} to {self.cwd}"
        return f"{counts} from {self.bucket}/{self.dest}"

    def to_dict(self) -> dict[str, Any]:
        """Convert the outcome to a JSON-serializable dictionary."""
        return {
            "action": self.action.value,
            "bucket": self.bucket,
            "dest": self.dest,
            "cwd": self.cwd,
            "dry_run": self.dry_run,
            "total": self.total,
            "transferred": self.transferred,
            "skipped": self.skipped,
            "excluded": self.excluded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "objects": [o.to_dict() for o in self.outcomes],
        }
