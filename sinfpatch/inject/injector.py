"""Patch sinfs and iTunesMetadata into an IPA in one archive update."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from sinfpatch.archive.accessor import ArchiveAccessor, InjectionItem
from sinfpatch.inject.contracts import SinfBlob
from sinfpatch.inject.locator import BundleContext, locate_bundle
from sinfpatch.inject.planner import plan_metadata_item, plan_sinf_items
from sinfpatch.utils.logger import setup_logger

log = setup_logger(__name__)

# listing -> locating -> planning -> converting -> writing -> done; any stage may go to failed
STAGE_LISTING = "listing"
STAGE_LOCATING = "locating"
STAGE_PLANNING = "planning"
STAGE_CONVERTING = "converting"
STAGE_WRITING = "writing"
STAGE_DONE = "done"
STAGE_FAILED = "failed"
_STAGE_ORDER = (
    STAGE_LISTING,
    STAGE_LOCATING,
    STAGE_PLANNING,
    STAGE_CONVERTING,
    STAGE_WRITING,
    STAGE_DONE,
)


@dataclass
class InjectResult:
    archive_path: Path
    bundle: BundleContext
    items: list[InjectionItem]
    wrote: bool
    metadata_converted: bool | None = None
    written_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "archive_path": str(self.archive_path),
            "bundle": self.bundle.to_dict(),
            "items": [item.describe() for item in self.items],
            "wrote": bool(self.wrote),
            "metadata_converted": self.metadata_converted,
            "written_paths": list(self.written_paths),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


class SinfInjector:
    """Runs one patch of one archive.

    Stages advance strictly forward. A failure in any stage moves to
    ``failed``, records the error and re-raises it; the archive is written
    at most once, as a single batch, in the ``writing`` stage.
    """

    def __init__(self, accessor: ArchiveAccessor, *, convert_metadata: bool = True) -> None:
        self.accessor = accessor
        self.convert_metadata = convert_metadata
        self.state: str | None = None
        self.failed_stage: str | None = None
        self.error: BaseException | None = None

    def _advance(self, stage: str) -> None:
        if self.state is not None and _STAGE_ORDER.index(stage) <= _STAGE_ORDER.index(self.state):
            raise RuntimeError(f"cannot move from {self.state} to {stage}")
        self.state = stage
        log.debug("%s: %s", self.accessor.archive_path, stage)

    def locate(self) -> BundleContext:
        self._advance(STAGE_LISTING)
        entries = self.accessor.list_entries()
        self._advance(STAGE_LOCATING)
        return locate_bundle(entries, self.accessor.read_entry)

    def run(self, sinfs: Sequence[SinfBlob], itunes_metadata: bytes | None = None) -> InjectResult:
        if self.state is not None:
            raise RuntimeError("SinfInjector instances are single-use")
        try:
            return self._run(sinfs, itunes_metadata)
        except Exception as exc:
            self.failed_stage = self.state
            self.state = STAGE_FAILED
            self.error = exc
            log.error("Injection into %s failed during %s: %s", self.accessor.archive_path, self.failed_stage, exc)
            raise

    def _run(self, sinfs: Sequence[SinfBlob], itunes_metadata: bytes | None) -> InjectResult:
        context = self.locate()

        self._advance(STAGE_PLANNING)
        items = plan_sinf_items(context, sinfs)

        self._advance(STAGE_CONVERTING)
        metadata_converted: bool | None = None
        if itunes_metadata is not None:
            metadata_item, metadata_converted = plan_metadata_item(itunes_metadata, convert=self.convert_metadata)
            items.append(metadata_item)

        self._advance(STAGE_WRITING)
        written: list[str] = []
        if items:
            written = self.accessor.write_entries(items)
        else:
            log.info("Nothing to inject into %s", self.accessor.archive_path)

        self._advance(STAGE_DONE)
        result = InjectResult(
            archive_path=self.accessor.archive_path,
            bundle=context,
            items=items,
            wrote=bool(items),
            metadata_converted=metadata_converted,
            written_paths=written,
        )
        log.info(
            "Injected %s: bundle=%s source=%s items=%d metadata_converted=%s",
            result.archive_path,
            context.bundle_name,
            context.source_kind,
            len(items),
            metadata_converted,
        )
        return result


def inject_sinfs(
    ipa_path: str | Path,
    sinfs: Sequence[SinfBlob],
    itunes_metadata: bytes | None = None,
    *,
    accessor: ArchiveAccessor | None = None,
    cfg=None,
) -> InjectResult:
    """Patch `sinfs` (and optional iTunesMetadata) into the IPA at `ipa_path`."""
    if accessor is None:
        accessor = (
            ArchiveAccessor.from_config(ipa_path, cfg)
            if cfg is not None
            else ArchiveAccessor(ipa_path)
        )
    convert = bool(cfg.metadata.convert_to_binary) if cfg is not None else True
    return SinfInjector(accessor, convert_metadata=convert).run(sinfs, itunes_metadata)


def inspect_archive(
    ipa_path: str | Path,
    *,
    accessor: ArchiveAccessor | None = None,
    cfg=None,
) -> BundleContext:
    """Run listing and locating only; the archive is never written."""
    if accessor is None:
        accessor = (
            ArchiveAccessor.from_config(ipa_path, cfg)
            if cfg is not None
            else ArchiveAccessor(ipa_path)
        )
    return SinfInjector(accessor).locate()
