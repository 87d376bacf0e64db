"""Archive access: listing, reading and batched in-place updates."""

from sinfpatch.archive.accessor import ArchiveAccessor, InjectionItem
from sinfpatch.archive.tools import (
    ArchiveEntry,
    ArchiveTool,
    InfoZipTool,
    ZipFileTool,
    build_archive_tool,
)

__all__ = [
    "ArchiveAccessor",
    "InjectionItem",
    "ArchiveEntry",
    "ArchiveTool",
    "InfoZipTool",
    "ZipFileTool",
    "build_archive_tool",
]
