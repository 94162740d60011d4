"""
Destination path resolution for object keys.

Object keys come from an upstream publisher and are not trusted: a key must
land inside the destination root, never on it and never outside it.
"""

from pathlib import Path

from filepuller.constants import PARTIAL_FILE_PREFIX, PARTIAL_FILE_SUFFIX
from filepuller.errors import UnsafeKeyError


def resolve_destination(root: Path, name: str) -> Path:
    """
    Join `name` onto `root` and check the result stays under `root`.

    Relative components that stay inside the root (``a/../b``) are allowed.
    Symlinks are resolved, so a link inside the root pointing elsewhere is
    rejected as well.

    Args:
        root: Destination root directory.
        name: Object key, already stripped of quoting.

    Returns:
        Path: Absolute destination path.

    Raises:
        UnsafeKeyError: If the key is empty, absolute, contains NUL, names
            the root itself, escapes it, or cannot be written as a regular
            file because a directory or file is in the way.
    """
    if not name:
        raise UnsafeKeyError(name, "empty object key")
    if "\x00" in name:
        raise UnsafeKeyError(name, "NUL byte in object key")
    if Path(name).anchor:
        raise UnsafeKeyError(name, "absolute path")

    base = root.resolve()
    target = (base / name).resolve()

    if target == base:
        raise UnsafeKeyError(name, "resolves to the destination root")
    if not target.is_relative_to(base):
        raise UnsafeKeyError(name, "escapes the destination root")
    if target.name.startswith(PARTIAL_FILE_PREFIX) and target.name.endswith(PARTIAL_FILE_SUFFIX):
        raise UnsafeKeyError(name, "collides with the partial file naming scheme")
    if target.is_dir():
        raise UnsafeKeyError(name, "names an existing directory")
    for parent in target.relative_to(base).parents:
        if (base / parent).exists() and not (base / parent).is_dir():
            raise UnsafeKeyError(name, f"{parent} is not a directory")

    return target
