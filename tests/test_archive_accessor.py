from __future__ import annotations

import os
import zipfile
from pathlib import Path

import pytest

from sinfpatch.archive import ArchiveAccessor, ArchiveTool, InjectionItem, ZipFileTool, build_archive_tool
from sinfpatch.archive._paths import check_entry_path, resolve_staged_path
from sinfpatch.archive.tools import InfoZipTool
from sinfpatch.errors import ArchiveToolFailure, EntryNotFound, UnsafePath
from sinfpatch.utils.config import load_config

from conftest import build_ipa, foo_members, read_members


class RecordingTool(ArchiveTool):
    """Delegates to ZipFileTool and records every call."""

    name = "recording"

    def __init__(self, fail_update: bool = False) -> None:
        self.inner = ZipFileTool()
        self.fail_update = fail_update
        self.calls: list[tuple[str, object]] = []
        self.staged_seen: dict[str, bytes] = {}

    def list(self, archive_path):
        self.calls.append(("list", None))
        return self.inner.list(archive_path)

    def extract(self, archive_path, entry_path):
        self.calls.append(("extract", entry_path))
        return self.inner.extract(archive_path, entry_path)

    def update(self, archive_path, working_dir, relative_paths):
        self.calls.append(("update", list(relative_paths)))
        self.staged_seen = {rel: (working_dir / rel).read_bytes() for rel in relative_paths}
        if self.fail_update:
            raise ArchiveToolFailure("update", "simulated", 1)
        self.inner.update(archive_path, working_dir, relative_paths)


def _accessor(ipa: Path, staging_parent: Path, tool: ArchiveTool | None = None) -> ArchiveAccessor:
    return ArchiveAccessor(ipa, tool=tool, staging_dir=staging_parent)


def test_list_entries_in_archive_order(foo_ipa: Path) -> None:
    entries = ArchiveAccessor(foo_ipa).list_entries()
    assert entries == list(foo_members())


def test_list_entries_of_empty_archive(tmp_path: Path) -> None:
    empty = build_ipa(tmp_path / "empty.ipa", {})
    assert ArchiveAccessor(empty).list_entries() == []


def test_list_entry_info_reports_sizes(foo_ipa: Path) -> None:
    sizes = {entry.path: entry.size for entry in ArchiveAccessor(foo_ipa).list_entry_info()}
    assert sizes["Payload/Foo.app/Assets.car"] == len(b"assets" * 100)
    assert sizes["Payload/"] == 0


def test_list_on_non_zip_is_tool_failure(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.ipa"
    bogus.write_bytes(b"not a zip at all")
    with pytest.raises(ArchiveToolFailure) as excinfo:
        ArchiveAccessor(bogus).list_entries()
    assert excinfo.value.retryable is True


def test_read_entry_returns_payload(foo_ipa: Path) -> None:
    data = ArchiveAccessor(foo_ipa).read_entry("Payload/Foo.app/SC_Info/Foo")
    assert data == foo_members()["Payload/Foo.app/SC_Info/Foo"]


def test_read_missing_entry(foo_ipa: Path) -> None:
    with pytest.raises(EntryNotFound) as excinfo:
        ArchiveAccessor(foo_ipa).read_entry("Payload/Foo.app/missing.plist")
    assert excinfo.value.entry_path == "Payload/Foo.app/missing.plist"


def test_read_rejects_traversal_before_calling_tool(foo_ipa: Path) -> None:
    tool = RecordingTool()
    with pytest.raises(UnsafePath):
        ArchiveAccessor(foo_ipa, tool=tool).read_entry("../outside.plist")
    assert tool.calls == []


def test_write_adds_and_overwrites_in_one_update(foo_ipa: Path, staging_parent: Path) -> None:
    tool = RecordingTool()
    before = read_members(foo_ipa)
    written = _accessor(foo_ipa, staging_parent, tool).write_entries(
        [
            InjectionItem("Payload/Foo.app/SC_Info/Foo.sinf", b"new-sinf"),
            InjectionItem("Payload/Foo.app/Info.plist", b"replaced"),
        ]
    )

    assert written == ["Payload/Foo.app/SC_Info/Foo.sinf", "Payload/Foo.app/Info.plist"]
    assert [name for name, _ in tool.calls] == ["update"]

    after = read_members(foo_ipa)
    assert after["Payload/Foo.app/SC_Info/Foo.sinf"] == b"new-sinf"
    assert after["Payload/Foo.app/Info.plist"] == b"replaced"
    for name, payload in before.items():
        if name != "Payload/Foo.app/Info.plist":
            assert after[name] == payload
    assert sorted(after) == sorted(set(before) | {"Payload/Foo.app/SC_Info/Foo.sinf"})


def test_written_entries_are_stored_uncompressed(foo_ipa: Path, staging_parent: Path) -> None:
    _accessor(foo_ipa, staging_parent).write_entries(
        [InjectionItem("Payload/Foo.app/SC_Info/Foo.sinf", b"x" * 4096)]
    )
    with zipfile.ZipFile(foo_ipa) as zf:
        assert zf.getinfo("Payload/Foo.app/SC_Info/Foo.sinf").compress_type == zipfile.ZIP_STORED
        assert zf.getinfo("Payload/Foo.app/Assets.car").compress_type == zipfile.ZIP_DEFLATED
        assert zf.testzip() is None


def test_duplicate_items_keep_last_payload(foo_ipa: Path, staging_parent: Path) -> None:
    written = _accessor(foo_ipa, staging_parent).write_entries(
        [InjectionItem("iTunesMetadata.plist", b"first"), InjectionItem("iTunesMetadata.plist", b"second")]
    )
    assert written == ["iTunesMetadata.plist"]
    assert read_members(foo_ipa)["iTunesMetadata.plist"] == b"second"


def test_write_requires_items(foo_ipa: Path) -> None:
    with pytest.raises(ValueError):
        ArchiveAccessor(foo_ipa).write_entries([])


@pytest.mark.parametrize(
    "entry_path",
    ["../../etc/passwd", "/etc/passwd", "C:/Windows/evil.dll", "Payload/../../x", "a\\..\\..\\b", "", "a\x00b"],
)
def test_unsafe_destination_aborts_whole_batch(foo_ipa: Path, staging_parent: Path, entry_path: str) -> None:
    tool = RecordingTool()
    before_bytes = foo_ipa.read_bytes()
    with pytest.raises(UnsafePath):
        _accessor(foo_ipa, staging_parent, tool).write_entries(
            [
                InjectionItem("Payload/Foo.app/SC_Info/Foo.sinf", b"ok"),
                InjectionItem(entry_path, b"evil"),
            ]
        )
    assert tool.calls == []
    assert foo_ipa.read_bytes() == before_bytes
    assert list(staging_parent.iterdir()) == []
    assert not (staging_parent.parent / "etc").exists()


def test_directory_destination_is_rejected(foo_ipa: Path, staging_parent: Path) -> None:
    with pytest.raises(UnsafePath):
        _accessor(foo_ipa, staging_parent).write_entries([InjectionItem("Payload/Foo.app/SC_Info/", b"x")])


def test_check_entry_path_accepts_nested_relative() -> None:
    assert check_entry_path("Payload/Foo.app/SC_Info/Foo.sinf").parts[-1] == "Foo.sinf"
    assert check_entry_path("iTunesMetadata.plist").name == "iTunesMetadata.plist"


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_staged_path_through_symlink_cannot_escape(tmp_path: Path) -> None:
    root = (tmp_path / "root").resolve()
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    try:
        (root / "link").symlink_to(outside, target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")
    with pytest.raises(UnsafePath):
        resolve_staged_path(root, "link/evil.sinf")
    assert resolve_staged_path(root, "ok/file.sinf") == root / "ok" / "file.sinf"


def test_staging_removed_when_tool_fails(foo_ipa: Path, staging_parent: Path) -> None:
    tool = RecordingTool(fail_update=True)
    before_bytes = foo_ipa.read_bytes()
    with pytest.raises(ArchiveToolFailure):
        _accessor(foo_ipa, staging_parent, tool).write_entries(
            [InjectionItem("Payload/Foo.app/SC_Info/Foo.sinf", b"payload")]
        )
    assert tool.staged_seen == {"Payload/Foo.app/SC_Info/Foo.sinf": b"payload"}
    assert list(staging_parent.iterdir()) == []
    assert foo_ipa.read_bytes() == before_bytes


def test_staging_removed_after_success(foo_ipa: Path, staging_parent: Path) -> None:
    _accessor(foo_ipa, staging_parent).write_entries([InjectionItem("iTunesMetadata.plist", b"meta")])
    assert list(staging_parent.iterdir()) == []


def test_update_of_non_zip_is_tool_failure(tmp_path: Path, staging_parent: Path) -> None:
    bogus = tmp_path / "bogus.ipa"
    bogus.write_bytes(b"garbage" * 10)
    with pytest.raises(ArchiveToolFailure) as excinfo:
        _accessor(bogus, staging_parent).write_entries([InjectionItem("iTunesMetadata.plist", b"meta")])
    assert excinfo.value.operation == "update"
    assert bogus.read_bytes() == b"garbage" * 10
    assert sorted(p.name for p in tmp_path.iterdir()) == ["bogus.ipa", "staging"]


def test_from_config_selects_backend(foo_ipa: Path) -> None:
    accessor = ArchiveAccessor.from_config(foo_ipa, load_config())
    assert isinstance(accessor.tool, ZipFileTool)
    assert accessor.staging_prefix == "sinfpatch-stage-"

    cfg = load_config(overrides={"archive.backend": "infozip", "archive.timeout_sec": 5})
    tool = build_archive_tool(cfg)
    assert isinstance(tool, InfoZipTool)
    assert tool.timeout_sec == 5.0


def test_unknown_backend_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_archive_tool(load_config(overrides={"archive.backend": "rar"}))


def test_new_entries_are_appended_after_existing_members(foo_ipa: Path, staging_parent: Path) -> None:
    original = foo_ipa.read_bytes()
    with zipfile.ZipFile(foo_ipa) as zf:
        offsets = {info.filename: info.header_offset for info in zf.infolist()}
        data_end = zf.start_dir

    _accessor(foo_ipa, staging_parent).write_entries([InjectionItem("Payload/Foo.app/SC_Info/Foo.sinf", b"new")])

    assert foo_ipa.read_bytes()[:data_end] == original[:data_end]
    with zipfile.ZipFile(foo_ipa) as zf:
        assert {name: zf.getinfo(name).header_offset for name in offsets} == offsets
        assert zf.getinfo("Payload/Foo.app/SC_Info/Foo.sinf").header_offset >= data_end
        assert zf.read("Payload/Foo.app/SC_Info/Foo.sinf") == b"new"


def test_overwrite_streams_untouched_members(
    foo_ipa: Path, staging_parent: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    before = read_members(foo_ipa)
    with zipfile.ZipFile(foo_ipa) as zf:
        compression = {info.filename: info.compress_type for info in zf.infolist()}

    def whole_member_read(self, name, pwd=None):
        raise AssertionError(f"{name} was read whole")

    monkeypatch.setattr(zipfile.ZipFile, "read", whole_member_read)
    _accessor(foo_ipa, staging_parent).write_entries([InjectionItem("Payload/Foo.app/Info.plist", b"replaced")])
    monkeypatch.undo()

    after = read_members(foo_ipa)
    assert after == {**before, "Payload/Foo.app/Info.plist": b"replaced"}
    assert list(after) == list(before)
    with zipfile.ZipFile(foo_ipa) as zf:
        for name, compress_type in compression.items():
            if name != "Payload/Foo.app/Info.plist":
                assert zf.getinfo(name).compress_type == compress_type
        assert zf.testzip() is None
    assert sorted(p.name for p in foo_ipa.parent.iterdir() if p.name.startswith(".sinfpatch-zip-")) == []


@pytest.mark.parametrize(
    "paths",
    [
        ("Payload/Foo.app/SC_Info/x", "Payload/Foo.app/SC_Info/x/y.sinf"),
        ("Payload/Foo.app/SC_Info/x/y.sinf", "Payload/Foo.app/SC_Info/x"),
    ],
)
def test_file_and_directory_collision_is_unsafe_path(
    foo_ipa: Path, staging_parent: Path, paths: tuple[str, str]
) -> None:
    tool = RecordingTool()
    before_bytes = foo_ipa.read_bytes()
    with pytest.raises(UnsafePath) as excinfo:
        _accessor(foo_ipa, staging_parent, tool).write_entries([InjectionItem(path, b"data") for path in paths])
    assert excinfo.value.retryable is False
    assert excinfo.value.entry_path == paths[1]
    assert tool.calls == []
    assert foo_ipa.read_bytes() == before_bytes
    assert list(staging_parent.iterdir()) == []
