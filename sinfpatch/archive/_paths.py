"""Entry-path checks shared by the archive reader and writer."""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from sinfpatch.errors import UnsafePath

_WINDOWS_DRIVE = re.compile(r"^[a-zA-Z]:")


def check_entry_path(entry_path: str) -> PurePosixPath:
    """Reject entry paths that could address anything outside the archive root.

    Purely lexical; runs before any extraction or staging.
    """
    if not isinstance(entry_path, str) or entry_path == "":
        raise UnsafePath(str(entry_path), "empty path")
    if "\x00" in entry_path:
        raise UnsafePath(entry_path, "NUL byte in path")
    name = entry_path.replace("\\", "/")
    if name.startswith("/") or _WINDOWS_DRIVE.match(name):
        raise UnsafePath(entry_path, "absolute path not allowed")
    rel_path = PurePosixPath(name)
    if ".." in rel_path.parts:
        raise UnsafePath(entry_path, "path traversal (..) not allowed")
    return rel_path


def resolve_staged_path(staging_root: Path, entry_path: str) -> Path:
    """Resolve a destination entry path inside the staging root.

    `staging_root` must already be resolved. The result is a strict
    descendant of it, otherwise `UnsafePath` is raised.
    """
    rel_path = check_entry_path(entry_path)
    if entry_path.endswith(("/", "\\")):
        raise UnsafePath(entry_path, "destination must name a file")
    target = (staging_root / Path(*rel_path.parts)).resolve()
    if staging_root not in target.parents:
        raise UnsafePath(entry_path, "resolved path escapes staging root")
    return target
