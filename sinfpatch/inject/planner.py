"""Turn a located bundle plus sinfs and metadata into archive writes.

Nothing here touches the archive; every function is a pure mapping from
inputs to `InjectionItem`s.
"""

from __future__ import annotations

from typing import Sequence

from sinfpatch.archive.accessor import InjectionItem
from sinfpatch.errors import PlistError
from sinfpatch.inject.contracts import SinfBlob
from sinfpatch.inject.locator import APP_SUFFIX, BundleContext, ExecutableName, ManifestPaths
from sinfpatch.plist import decode_xml, encode_binary
from sinfpatch.utils.logger import setup_logger

log = setup_logger(__name__)

PAYLOAD_DIR = "Payload"
SC_INFO_DIR = "SC_Info"
SINF_SUFFIX = ".sinf"
ITUNES_METADATA_PATH = "iTunesMetadata.plist"


def bundle_prefix(bundle_name: str) -> str:
    return f"{PAYLOAD_DIR}/{bundle_name}{APP_SUFFIX}"


def plan_sinf_items(context: BundleContext, sinfs: Sequence[SinfBlob]) -> list[InjectionItem]:
    prefix = bundle_prefix(context.bundle_name)
    source = context.source

    if isinstance(source, ManifestPaths):
        # slots without a sinf, and sinfs without a slot, are skipped
        if len(source.paths) != len(sinfs):
            log.warning(
                "Manifest lists %d sinf paths but %d sinfs were supplied; injecting %d",
                len(source.paths),
                len(sinfs),
                min(len(source.paths), len(sinfs)),
            )
        return [
            InjectionItem(entry_path=f"{prefix}/{sinf_path}", data=sinf.data)
            for sinf_path, sinf in zip(source.paths, sinfs)
        ]

    if isinstance(source, ExecutableName):
        if not sinfs:
            return []
        if len(sinfs) > 1:
            log.warning("No manifest in %s; injecting only the first of %d sinfs", prefix, len(sinfs))
        return [
            InjectionItem(
                entry_path=f"{prefix}/{SC_INFO_DIR}/{source.name}{SINF_SUFFIX}",
                data=sinfs[0].data,
            )
        ]

    raise TypeError(f"unknown sinf source: {type(source).__name__}")


def convert_metadata(raw: bytes) -> tuple[bytes, bool]:
    """Re-encode an XML iTunesMetadata plist as binary.

    Returns:
        (payload, converted). Any decode or encode failure returns the
        original bytes with converted=False.
    """
    try:
        return encode_binary(decode_xml(raw)), True
    except PlistError as exc:
        log.warning("iTunesMetadata kept as supplied (%d bytes): %s", len(raw), exc)
        return raw, False


def plan_metadata_item(raw: bytes, *, convert: bool = True) -> tuple[InjectionItem, bool]:
    if convert:
        payload, converted = convert_metadata(raw)
    else:
        payload, converted = raw, False
    return InjectionItem(entry_path=ITUNES_METADATA_PATH, data=payload), converted


def plan_injection(
    context: BundleContext,
    sinfs: Sequence[SinfBlob],
    metadata: bytes | None = None,
    *,
    convert_metadata_to_binary: bool = True,
) -> list[InjectionItem]:
    """Full ordered plan: sinf items first, then the metadata item if any."""
    items = plan_sinf_items(context, sinfs)
    if metadata is not None:
        item, _ = plan_metadata_item(metadata, convert=convert_metadata_to_binary)
        items.append(item)
    return items
