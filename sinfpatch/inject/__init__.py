"""Sinf and iTunesMetadata injection into IPA archives."""

from sinfpatch.inject.contracts import SinfBlob, SinfRecord, load_sinf_blobs, parse_sinf_records
from sinfpatch.inject.injector import InjectResult, SinfInjector, inject_sinfs, inspect_archive
from sinfpatch.inject.locator import (
    BundleContext,
    ExecutableName,
    ManifestPaths,
    find_bundle_root,
    locate_bundle,
    read_info,
    read_manifest,
)
from sinfpatch.inject.planner import (
    ITUNES_METADATA_PATH,
    convert_metadata,
    plan_injection,
    plan_metadata_item,
    plan_sinf_items,
)

__all__ = [
    "SinfBlob",
    "SinfRecord",
    "load_sinf_blobs",
    "parse_sinf_records",
    "InjectResult",
    "SinfInjector",
    "inject_sinfs",
    "inspect_archive",
    "BundleContext",
    "ExecutableName",
    "ManifestPaths",
    "find_bundle_root",
    "locate_bundle",
    "read_info",
    "read_manifest",
    "ITUNES_METADATA_PATH",
    "convert_metadata",
    "plan_injection",
    "plan_metadata_item",
    "plan_sinf_items",
]
