"""Single-owner access to one archive: list, read, batch write."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from sinfpatch.archive._paths import check_entry_path, resolve_staged_path
from sinfpatch.archive.tools import ArchiveEntry, ArchiveTool, ZipFileTool, build_archive_tool
from sinfpatch.errors import ArchiveToolFailure, UnsafePath
from sinfpatch.utils.logger import setup_logger

log = setup_logger(__name__)


@dataclass(frozen=True)
class InjectionItem:
    """Bytes to place at `entry_path`, overwriting any existing entry."""

    entry_path: str
    data: bytes

    def describe(self) -> dict[str, object]:
        return {"entry_path": self.entry_path, "size": len(self.data)}


class ArchiveAccessor:
    """Reads and patches one archive through an `ArchiveTool`.

    Callers must not run two accessors against the same archive path at once;
    nothing here locks the file.
    """

    def __init__(
        self,
        archive_path: str | Path,
        *,
        tool: ArchiveTool | None = None,
        staging_dir: str | Path | None = None,
        staging_prefix: str = "sinfpatch-stage-",
    ) -> None:
        self.archive_path = Path(archive_path).expanduser()
        self.tool = tool if tool is not None else ZipFileTool()
        self.staging_dir = Path(staging_dir).expanduser() if staging_dir is not None else None
        self.staging_prefix = staging_prefix

    @classmethod
    def from_config(cls, archive_path: str | Path, cfg, *, tool: ArchiveTool | None = None) -> "ArchiveAccessor":
        archive_cfg = cfg.archive
        return cls(
            archive_path,
            tool=tool if tool is not None else build_archive_tool(cfg),
            staging_dir=archive_cfg.get("staging_dir"),
            staging_prefix=str(archive_cfg.get("staging_prefix", "sinfpatch-stage-")),
        )

    def list_entries(self) -> list[str]:
        return [entry.path for entry in self.list_entry_info()]

    def list_entry_info(self) -> list[ArchiveEntry]:
        entries = self.tool.list(self.archive_path)
        log.debug("Listed %d entries in %s via %s", len(entries), self.archive_path, self.tool.name)
        return entries

    def read_entry(self, entry_path: str) -> bytes:
        check_entry_path(entry_path)
        data = self.tool.extract(self.archive_path, entry_path)
        log.debug("Read %s (%d bytes)", entry_path, len(data))
        return data

    def write_entries(self, items: Sequence[InjectionItem]) -> list[str]:
        """Add or overwrite every item in one archive update.

        All destination paths are checked against a private staging root
        before anything is written there. The staging root is removed on
        every exit path.

        Returns:
            Archive-relative paths handed to the tool, in first-seen order.
        """
        if not items:
            raise ValueError("write_entries requires at least one item")

        if self.staging_dir is not None:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        staging_root = Path(
            tempfile.mkdtemp(
                prefix=self.staging_prefix,
                dir=str(self.staging_dir) if self.staging_dir is not None else None,
            )
        ).resolve()
        try:
            targets = [(item, resolve_staged_path(staging_root, item.entry_path)) for item in items]

            relative_paths: list[str] = []
            for item, target in targets:
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(item.data)
                except (FileExistsError, IsADirectoryError, NotADirectoryError) as exc:
                    # one item names a file where another needs a directory
                    raise UnsafePath(item.entry_path, f"conflicts with another entry in the batch ({exc.strerror})") from exc
                except OSError as exc:
                    raise ArchiveToolFailure("stage", f"{item.entry_path}: {exc}"[:200]) from exc
                rel = target.relative_to(staging_root).as_posix()
                if rel not in relative_paths:
                    relative_paths.append(rel)

            self.tool.update(self.archive_path, staging_root, relative_paths)
            log.debug("Updated %s with %d entries via %s", self.archive_path, len(relative_paths), self.tool.name)
            return relative_paths
        finally:
            shutil.rmtree(staging_root, ignore_errors=True)
