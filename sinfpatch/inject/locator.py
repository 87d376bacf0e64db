"""Locate the app bundle and its sinf destinations inside an IPA listing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, Union

from sinfpatch.errors import BundleNotFound, LocatorFailed, PlistError
from sinfpatch.plist import PArray, PDict, PString, PropertyValue, decode
from sinfpatch.utils.logger import setup_logger

log = setup_logger(__name__)

EntryReader = Callable[[str], bytes]

APP_SUFFIX = ".app"
INFO_PLIST_SUFFIX = ".app/Info.plist"
MANIFEST_SUFFIX = ".app/SC_Info/Manifest.plist"
WATCH_SEGMENT = "/Watch/"
SINF_PATHS_KEY = "SinfPaths"
EXECUTABLE_KEY = "CFBundleExecutable"


@dataclass(frozen=True)
class ManifestPaths:
    """Bundle-relative sinf destinations, one per sinf slot."""

    paths: tuple[str, ...]


@dataclass(frozen=True)
class ExecutableName:
    """Main executable name, used to derive `SC_Info/<name>.sinf`."""

    name: str


SinfSource = Union[ManifestPaths, ExecutableName]


@dataclass(frozen=True)
class BundleContext:
    bundle_name: str
    source: SinfSource

    @property
    def source_kind(self) -> str:
        if isinstance(self.source, ManifestPaths):
            return "manifest"
        if isinstance(self.source, ExecutableName):
            return "info_plist"
        raise TypeError(f"unknown sinf source: {type(self.source).__name__}")

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {"bundle_name": self.bundle_name, "source": self.source_kind}
        if isinstance(self.source, ManifestPaths):
            out["sinf_paths"] = list(self.source.paths)
        else:
            out["executable"] = self.source.name
        return out


def _is_bundle_info_plist(entry_path: str) -> bool:
    return entry_path.endswith(INFO_PLIST_SUFFIX) and WATCH_SEGMENT not in entry_path


def find_bundle_root(entries: Sequence[str]) -> str:
    """Return `<Name>` for the first `<Name>.app/Info.plist` outside a Watch subtree."""
    for entry_path in entries:
        if not _is_bundle_info_plist(entry_path):
            continue
        for component in entry_path.split("/"):
            if component.endswith(APP_SUFFIX) and len(component) > len(APP_SUFFIX):
                return component[: -len(APP_SUFFIX)]
    raise BundleNotFound("could not find <Name>.app/Info.plist in archive")


def _decode_entry(entry_path: str, reader: EntryReader) -> PropertyValue | None:
    """Read and decode one plist entry; an undecodable payload yields None."""
    try:
        return decode(reader(entry_path))
    except PlistError as exc:
        log.warning("Ignoring unreadable plist %s: %s", entry_path, exc)
        return None


def _belongs_to_bundle(entry_path: str, bundle_name: str | None) -> bool:
    if bundle_name is None:
        return True
    # the .app directly above SC_Info must be the located bundle
    tail = f"{bundle_name}{MANIFEST_SUFFIX}"
    return entry_path == tail or entry_path.endswith(f"/{tail}")


def read_manifest(
    entries: Sequence[str],
    reader: EntryReader,
    bundle_name: str | None = None,
) -> ManifestPaths | None:
    """Decode `SC_Info/Manifest.plist` and return its `SinfPaths`.

    Only the first manifest entry is consulted. An undecodable manifest, or a
    missing or non-list field, yields None. Read failures propagate.
    """
    for entry_path in entries:
        if not entry_path.endswith(MANIFEST_SUFFIX) or not _belongs_to_bundle(entry_path, bundle_name):
            continue
        root = _decode_entry(entry_path, reader)
        if not isinstance(root, PDict):
            log.debug("Manifest %s is not a dictionary", entry_path)
            return None
        sinf_paths = root.get(SINF_PATHS_KEY)
        if not isinstance(sinf_paths, PArray):
            log.debug("Manifest %s has no %s array", entry_path, SINF_PATHS_KEY)
            return None
        if not all(isinstance(item, PString) for item in sinf_paths):
            log.debug("Manifest %s lists non-string sinf paths", entry_path)
            return None
        return ManifestPaths(paths=tuple(item.value for item in sinf_paths))
    return None


def read_info(entries: Sequence[str], reader: EntryReader) -> ExecutableName | None:
    """Decode the bundle Info.plist and return `CFBundleExecutable`."""
    for entry_path in entries:
        if not _is_bundle_info_plist(entry_path):
            continue
        root = _decode_entry(entry_path, reader)
        if not isinstance(root, PDict):
            return None
        executable = root.get(EXECUTABLE_KEY)
        if not isinstance(executable, PString):
            log.debug("Info.plist %s has no string %s", entry_path, EXECUTABLE_KEY)
            return None
        return ExecutableName(name=executable.value)
    return None


def locate_bundle(entries: Sequence[str], reader: EntryReader) -> BundleContext:
    """Resolve the bundle name and where its sinfs belong.

    The manifest wins; Info.plist is read only when no manifest is usable.

    Raises:
        BundleNotFound: no qualifying bundle root in `entries`.
        LocatorFailed: neither manifest nor Info.plist is usable.
    """
    bundle_name = find_bundle_root(entries)

    manifest = read_manifest(entries, reader, bundle_name)
    if manifest is not None:
        log.debug("Bundle %s: %d sinf paths from manifest", bundle_name, len(manifest.paths))
        return BundleContext(bundle_name=bundle_name, source=manifest)

    info = read_info(entries, reader)
    if info is not None:
        log.debug("Bundle %s: no manifest, executable %s", bundle_name, info.name)
        return BundleContext(bundle_name=bundle_name, source=info)

    raise LocatorFailed(f"could not read manifest or Info.plist for {bundle_name}{APP_SUFFIX}")
