"""Archive tool backends: list, extract and update a zip-format archive."""

from __future__ import annotations

import copy
import re
import shutil
import subprocess
import tempfile
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from sinfpatch.errors import ArchiveToolFailure, EntryNotFound
from sinfpatch.utils.logger import setup_logger

log = setup_logger(__name__)


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    size: int


class ArchiveTool(ABC):
    """Opaque archive capability behind the accessor.

    Implementations raise `EntryNotFound` for a missing member and
    `ArchiveToolFailure` for anything the tool itself reports as failure.
    """

    name = "archive-tool"

    @abstractmethod
    def list(self, archive_path: Path) -> list[ArchiveEntry]:
        """Enumerate entries in archive order without extracting payloads."""

    @abstractmethod
    def extract(self, archive_path: Path, entry_path: str) -> bytes:
        """Return the raw bytes of one entry."""

    @abstractmethod
    def update(self, archive_path: Path, working_dir: Path, relative_paths: Sequence[str]) -> None:
        """Add or overwrite `relative_paths` (files under `working_dir`) stored, uncompressed."""


class ZipFileTool(ArchiveTool):
    """In-process backend built on `zipfile`.

    When none of the staged paths exist yet, `update` appends them in place:
    existing members are neither read nor moved. Overwriting an existing
    member needs a rebuild, so the archive is streamed member by member into
    a sibling temporary file that replaces the original only on success.
    Untouched members are recompressed on that path.
    """

    name = "zipfile"

    def list(self, archive_path: Path) -> list[ArchiveEntry]:
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                return [ArchiveEntry(path=info.filename, size=int(info.file_size)) for info in zf.infolist()]
        except (OSError, zipfile.BadZipFile) as exc:
            raise ArchiveToolFailure("list", str(exc)[:200]) from exc

    def extract(self, archive_path: Path, entry_path: str) -> bytes:
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                try:
                    info = zf.getinfo(entry_path)
                except KeyError:
                    raise EntryNotFound(entry_path) from None
                return zf.read(info)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            raise ArchiveToolFailure("extract", str(exc)[:200]) from exc

    def update(self, archive_path: Path, working_dir: Path, relative_paths: Sequence[str]) -> None:
        staged = {rel: working_dir / rel for rel in relative_paths}
        try:
            with zipfile.ZipFile(archive_path, "r") as src:
                existing = set(src.namelist())
            if existing.isdisjoint(staged):
                self._append(archive_path, staged, relative_paths)
            else:
                self._rewrite(archive_path, staged, relative_paths)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            raise ArchiveToolFailure("update", str(exc)[:200]) from exc

    def _append(self, archive_path: Path, staged: dict[str, Path], relative_paths: Sequence[str]) -> None:
        log.debug("Appending %d new members to %s", len(staged), archive_path)
        with zipfile.ZipFile(archive_path, "a") as dst:
            for rel in dict.fromkeys(relative_paths):
                self._write_staged(dst, staged[rel], rel)

    def _rewrite(self, archive_path: Path, staged: dict[str, Path], relative_paths: Sequence[str]) -> None:
        log.debug("Rewriting %s to replace existing members", archive_path)
        with tempfile.TemporaryDirectory(prefix=".sinfpatch-zip-", dir=archive_path.parent) as tmp_dir:
            tmp_zip = Path(tmp_dir) / archive_path.name
            written: set[str] = set()
            with zipfile.ZipFile(archive_path, "r") as src, zipfile.ZipFile(tmp_zip, "w") as dst:
                dst.comment = src.comment
                for info in src.infolist():
                    if info.filename in staged:
                        # replace in place; drop any duplicate of an already written name
                        if info.filename not in written:
                            self._write_staged(dst, staged[info.filename], info.filename)
                            written.add(info.filename)
                        continue
                    if info.is_dir():
                        dst.writestr(info, b"")
                        continue
                    with src.open(info) as fin, dst.open(copy.copy(info), "w") as fout:
                        shutil.copyfileobj(fin, fout)
                for rel in relative_paths:
                    if rel not in written:
                        self._write_staged(dst, staged[rel], rel)
                        written.add(rel)
            tmp_zip.replace(archive_path)

    @staticmethod
    def _write_staged(dst: zipfile.ZipFile, source: Path, arcname: str) -> None:
        info = zipfile.ZipInfo.from_file(source, arcname=arcname)
        info.compress_type = zipfile.ZIP_STORED
        dst.writestr(info, source.read_bytes())


# `unzip -l` rows:     1234  01-31-2024 00:00   Payload/App.app/file (some builds print ISO dates)
_UNZIP_LIST_ROW = re.compile(r"^\s*(\d+)\s+\d{2,4}-\d{2}-\d{2,4}\s+\d{2}:\d{2}\s+(.+)$")
_UNZIP_WILDCARD = re.compile(r"([\[*?])")
_UNZIP_EMPTY_ARCHIVE = "zipfile is empty"
_UNZIP_NO_MATCH = 11


def parse_unzip_listing(stdout: str) -> list[ArchiveEntry]:
    entries: list[ArchiveEntry] = []
    for line in stdout.splitlines():
        match = _UNZIP_LIST_ROW.match(line)
        if match:
            entries.append(ArchiveEntry(path=match.group(2).strip(), size=int(match.group(1))))
    return entries


def escape_unzip_pattern(entry_path: str) -> str:
    """Make `unzip` match `entry_path` literally rather than as a wildcard.

    A lone `]` is already literal; wrapping it would open a new class.
    """
    return _UNZIP_WILDCARD.sub(r"[\1]", entry_path)


class InfoZipTool(ArchiveTool):
    """Backend shelling out to Info-ZIP `unzip` / `zip`."""

    name = "infozip"

    def __init__(self, unzip_bin: str = "unzip", zip_bin: str = "zip", timeout_sec: float | None = None) -> None:
        self.unzip_bin = unzip_bin
        self.zip_bin = zip_bin
        self.timeout_sec = timeout_sec

    def _run(self, operation: str, cmd: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess:
        log.debug("Running %s: %s", operation, cmd)
        try:
            return subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                timeout=self.timeout_sec,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ArchiveToolFailure(operation, str(exc)[:200]) from exc

    def list(self, archive_path: Path) -> list[ArchiveEntry]:
        result = self._run("list", [self.unzip_bin, "-l", "--", str(archive_path)])
        stdout = result.stdout.decode("utf-8", errors="replace")
        stderr = result.stderr.decode("utf-8", errors="replace")
        if result.returncode != 0:
            if _UNZIP_EMPTY_ARCHIVE in stdout or _UNZIP_EMPTY_ARCHIVE in stderr:
                return []
            raise ArchiveToolFailure("list", stderr.strip()[:200], result.returncode)
        return parse_unzip_listing(stdout)

    def extract(self, archive_path: Path, entry_path: str) -> bytes:
        result = self._run(
            "extract",
            [self.unzip_bin, "-p", "--", str(archive_path), escape_unzip_pattern(entry_path)],
        )
        if result.returncode == _UNZIP_NO_MATCH:
            raise EntryNotFound(entry_path)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise ArchiveToolFailure("extract", stderr.strip()[:200], result.returncode)
        return result.stdout

    def update(self, archive_path: Path, working_dir: Path, relative_paths: Sequence[str]) -> None:
        # -0: store without compression; -X: no extra attributes
        cmd = [self.zip_bin, "-0", "-X", "-q", str(archive_path.resolve()), "--", *relative_paths]
        result = self._run("update", cmd, cwd=working_dir)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise ArchiveToolFailure("update", stderr.strip()[:200], result.returncode)


def build_archive_tool(cfg=None) -> ArchiveTool:
    """Construct the backend named by `archive.backend`."""
    if cfg is None:
        return ZipFileTool()
    archive_cfg = cfg.archive
    backend = str(archive_cfg.backend).strip().lower()
    if backend == "zipfile":
        return ZipFileTool()
    if backend == "infozip":
        timeout = archive_cfg.get("timeout_sec")
        return InfoZipTool(
            unzip_bin=str(archive_cfg.unzip_bin),
            zip_bin=str(archive_cfg.zip_bin),
            timeout_sec=float(timeout) if timeout is not None else None,
        )
    raise ValueError(f"unknown archive backend: {archive_cfg.backend}")
