"""Glob pattern matching and local file enumeration."""

import fnmatch
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

Patterns = Union[str, list[str], tuple[str, ...]]


def _as_list(patterns: Optional[Patterns]) -> list[str]:
    if not patterns:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return list(patterns)


def _matches(pattern: str, path: str) -> bool:
    """Match one glob against a '/'-separated path.

    Patterns without a slash are also tried against the base name, so
    ``*.tmp`` matches ``site/cache/a.tmp``.
    """
    if fnmatch.fnmatchcase(path, pattern):
        return True
    if "/" not in pattern:
        return fnmatch.fnmatchcase(path.rsplit("/", 1)[-1], pattern)
    return False


def is_match(patterns: Optional[Patterns], path: str) -> bool:
    """Check a path against one or more glob patterns.

    Patterns are applied in order; a pattern starting with ``!`` removes
    paths matched by the preceding patterns.

    Examples:
        >>> is_match("*.tmp", "site/a.tmp")
        True
        >>> is_match(["site/**", "!*.html"], "site/index.html")
        False
    """
    matched = False
    for pattern in _as_list(patterns):
        if pattern.startswith("!"):
            if matched and _matches(pattern[1:], path):
                matched = False
        elif not matched and _matches(pattern, path):
            matched = True
    return matched


class ExcludeMatcher:
    """Decides whether remote objects are excluded from a task."""

    def __init__(self, patterns: Optional[Patterns], flip: bool = False):
        """Initialize the matcher.

        Args:
            patterns: Exclude pattern(s); None excludes nothing
            flip: Invert the match, so only matching objects are kept
        """
        self.patterns = _as_list(patterns)
        self.flip = flip

    def is_excluded(self, key: str) -> bool:
        """Return True if the object with this key must be left alone."""
        if not self.patterns:
            return False
        excluded = is_match(self.patterns, key)
        return not excluded if self.flip else excluded


def list_local_files(directory: Union[str, Path]) -> set[str]:
    """Recursively list the files under a directory.

    Args:
        directory: Directory to scan

    Returns:
        Relative paths using forward slashes; empty if the directory does
        not exist
    """
    base = Path(directory)
    if not base.is_dir():
        logger.debug("Local directory %s does not exist", base)
        return set()
    return {p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file()}


def expand_sources(
    patterns: Optional[Patterns], cwd: Optional[Union[str, Path]] = None
) -> list[str]:
    """Expand source patterns into the list of matching files.

    Directories are never returned. Patterns starting with ``!`` remove
    previously matched paths.

    Args:
        patterns: Source paths or glob patterns, relative to ``cwd``
        cwd: Base directory (current directory when None)

    Returns:
        Relative paths (forward slashes) in pattern order, without duplicates
    """
    base = Path(cwd) if cwd else Path(".")
    result: list[str] = []
    seen: set[str] = set()

    for pattern in _as_list(patterns):
        if pattern.startswith("!"):
            removed = {p for p in result if _matches(pattern[1:], p)}
            result = [p for p in result if p not in removed]
            seen -= removed
            continue

        if any(c in pattern for c in "*?["):
            candidates = sorted(base.glob(pattern))
        else:
            candidates = [base / pattern] if (base / pattern).exists() else []

        if not candidates:
            logger.debug("Source pattern %r matched nothing in %s", pattern, base)

        for path in candidates:
            # Prevents creating empty folders
            if path.is_dir():
                continue
            try:
                relative = path.relative_to(base).as_posix()
            except ValueError:
                # Absolute source outside of cwd
                relative = path.as_posix()
            if relative not in seen:
                seen.add(relative)
                result.append(relative)

    return result
