"""Mapping between local paths and object keys."""

import os
import posixpath
from pathlib import PurePath
from typing import Optional, Union

ROOT_MARKER = "."
"""Key produced when no destination path is given"""


def unixify_path(path: Union[str, PurePath]) -> str:
    """Return a path with forward slashes on every platform."""
    if isinstance(path, PurePath):
        return path.as_posix()
    return path.replace("\\", "/")


def is_directory_prefix(dest: str) -> bool:
    """Whether a destination denotes a directory (ends with '/')."""
    return dest.endswith("/")


def remote_key(local_path: Union[str, PurePath], dest: str) -> Optional[str]:
    """Derive the object key for a local file.

    Args:
        local_path: Path of the file relative to the upload's working directory
        dest: Declared destination

    Returns:
        The object key, or None when the destination resolves to the root
        marker "." (nothing is created there)

    Examples:
        >>> remote_key("css/main.css", "site/")
        'site/css/main.css'
        >>> remote_key("./a.txt", "site//")
        'site/a.txt'
        >>> remote_key("a.txt", "backup/latest.txt")
        'backup/latest.txt'
        >>> remote_key("/tmp/a.txt", "site/")
        'site/tmp/a.txt'
        >>> remote_key("a.txt", ".") is None
        True
    """
    if is_directory_prefix(dest):
        # Absolute sources stay under dest
        relative = unixify_path(local_path).lstrip("/")
        key = posixpath.normpath(posixpath.join(dest, relative))
    else:
        key = posixpath.normpath(dest) if dest else ROOT_MARKER

    if key == ROOT_MARKER:
        return None
    return key.lstrip("/")


def local_relative_path(key: str, dest: str) -> str:
    """Derive the local path (relative to a working directory) of an object.

    Args:
        key: Object key
        dest: Prefix the objects were listed with

    Returns:
        Relative local path

    Examples:
        >>> local_relative_path("site/css/main.css", "site/")
        'css/main.css'
        >>> local_relative_path("backup/latest.txt", "backup/latest.txt")
        'latest.txt'
        >>> local_relative_path("site/a.txt", "site")
        'site/a.txt'
    """
    if is_directory_prefix(dest):
        return key.replace(dest, "", 1)
    if key.replace(dest, "", 1) == "":
        return key.split("/")[-1]
    return key


def download_path(cwd: Union[str, PurePath], relative_path: str) -> str:
    """Join the relative path of a downloaded object under a directory.

    Leading slashes are dropped so that keys such as ``site//etc/x`` are
    written below ``cwd``.

    Examples:
        >>> download_path("backup", "css/main.css")
        'backup/css/main.css'
        >>> download_path("backup", "/etc/passwd")
        'backup/etc/passwd'
    """
    return os.path.normpath(os.path.join(cwd, relative_path.lstrip("/")))


def is_within(directory: Union[str, PurePath], path: Union[str, PurePath]) -> bool:
    """Whether ``path`` lies inside ``directory`` once both are resolved."""
    base = os.path.abspath(directory)
    target = os.path.abspath(path)
    return os.path.commonpath([base, target]) == base
