"""Declarative source/destination bindings."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..exceptions import ConfigurationError


class SyncAction(str, Enum):
    """Operation performed by a sync spec."""

    UPLOAD = "upload"
    """Upload local files to the bucket"""

    DOWNLOAD = "download"
    """Download the objects under a prefix"""

    DELETE = "delete"
    """Delete the objects under a prefix"""

    @classmethod
    def from_string(cls, value: Union[str, "SyncAction"]) -> "SyncAction":
        """Parse an action name (case-insensitive)."""
        if isinstance(value, SyncAction):
            return value
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            valid = ", ".join(a.value for a in cls)
            raise ConfigurationError(
                f"Invalid action {value!r}, expected one of: {valid}"
            ) from None


# Keys accepted by SyncSpec.from_dict
_SPEC_KEYS = frozenset(
    {"action", "src", "dest", "cwd", "exclude", "flipExclude", "differential", "params"}
)


@dataclass(frozen=True)
class SyncSpec:
    """A source/destination binding as declared by the user.

    Examples:
        >>> spec = SyncSpec(SyncAction.UPLOAD, ("a.txt", "b.txt"), dest="site/")
        >>> spec = SyncSpec.from_dict({"action": "delete", "dest": "old/"})
    """

    action: SyncAction = SyncAction.UPLOAD
    """Operation to perform"""

    source_paths: tuple[str, ...] = ()
    """Source files or glob patterns (uploads only), relative to ``cwd``"""

    dest: Optional[str] = None
    """Destination key, or key prefix when ending with '/'"""

    cwd: Optional[str] = None
    """Local working directory"""

    exclude: Optional[Union[str, tuple[str, ...]]] = None
    """Glob pattern(s) of remote keys to leave alone"""

    flip_exclude: bool = False
    """Only act on keys matching ``exclude``"""

    differential: Optional[bool] = None
    """Only transfer changed files; None inherits the global option"""

    params: Mapping[str, Any] = field(default_factory=dict)
    """PutObject parameters for this spec's uploads"""

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", SyncAction.from_string(self.action))
        if isinstance(self.source_paths, str):
            object.__setattr__(self, "source_paths", (self.source_paths,))
        else:
            object.__setattr__(self, "source_paths", tuple(self.source_paths))
        if isinstance(self.exclude, list):
            object.__setattr__(self, "exclude", tuple(self.exclude))
        object.__setattr__(self, "params", dict(self.params or {}))

    def resolve_differential(self, default: bool) -> bool:
        """Return the effective differential flag."""
        return default if self.differential is None else self.differential

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncSpec":
        """Create a SyncSpec from a config-file entry.

        Args:
            data: Mapping with ``action``, ``src``, ``dest``, ``cwd``,
                ``exclude``, ``flipExclude``, ``differential`` and ``params``

        Raises:
            ConfigurationError: If the entry has unknown keys
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Sync entry must be an object, got {data!r}")

        unknown = sorted(set(data) - _SPEC_KEYS)
        if unknown:
            raise ConfigurationError(
                f"Unknown field(s) in sync entry: {', '.join(unknown)}"
            )

        src = data.get("src") or ()
        return cls(
            action=data.get("action", SyncAction.UPLOAD.value),
            source_paths=(src,) if isinstance(src, str) else tuple(src),
            dest=data.get("dest"),
            cwd=data.get("cwd"),
            exclude=data.get("exclude"),
            flip_exclude=bool(data.get("flipExclude", False)),
            differential=data.get("differential"),
            params=data.get("params") or {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the config-file representation."""
        result: dict[str, Any] = {"action": self.action.value}
        if self.source_paths:
            result["src"] = list(self.source_paths)
        if self.dest is not None:
            result["dest"] = self.dest
        if self.cwd is not None:
            result["cwd"] = self.cwd
        if self.exclude is not None:
            result["exclude"] = (
                self.exclude if isinstance(self.exclude, str) else list(self.exclude)
            )
        if self.flip_exclude:
            result["flipExclude"] = True
        if self.differential is not None:
            result["differential"] = self.differential
        if self.params:
            result["params"] = dict(self.params)
        return result
