from __future__ import annotations

import base64
import json
import plistlib
import zipfile
from pathlib import Path

import pytest

FOO_EXECUTABLE = b"\xcf\xfa\xed\xfe fake mach-o"
SINF_0 = b"sinf-blob-0\x00\x01\x02"
SINF_1 = b"sinf-blob-1\xff\xfe"


def build_ipa(path: Path, members: dict[str, bytes], *, compression: int = zipfile.ZIP_DEFLATED) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=compression) as zf:
        for name, payload in members.items():
            zf.writestr(name, payload)
    return path


def read_members(path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(path, "r") as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


def info_plist(executable: str | None = "Foo", *, fmt=plistlib.FMT_BINARY) -> bytes:
    payload = {"CFBundleIdentifier": "com.example.foo", "CFBundleVersion": "1.0"}
    if executable is not None:
        payload["CFBundleExecutable"] = executable
    return plistlib.dumps(payload, fmt=fmt)


def manifest_plist(sinf_paths, *, fmt=plistlib.FMT_XML) -> bytes:
    return plistlib.dumps({"SinfPaths": sinf_paths, "SinfReplicationPaths": []}, fmt=fmt)


def foo_members(*, with_manifest: bool = True, sinf_paths=None) -> dict[str, bytes]:
    members = {
        "Payload/": b"",
        "Payload/Foo.app/": b"",
        "Payload/Foo.app/Info.plist": info_plist("Foo"),
        "Payload/Foo.app/SC_Info/Foo": FOO_EXECUTABLE,
        "Payload/Foo.app/Assets.car": b"assets" * 100,
    }
    if with_manifest:
        members["Payload/Foo.app/SC_Info/Manifest.plist"] = manifest_plist(
            sinf_paths if sinf_paths is not None else ["SC_Info/Foo.sinf"]
        )
    return members


def write_sinfs_json(path: Path, blobs: list[bytes]) -> Path:
    records = [{"id": i, "sinf": base64.b64encode(blob).decode("ascii")} for i, blob in enumerate(blobs)]
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


@pytest.fixture()
def foo_ipa(tmp_path: Path) -> Path:
    return build_ipa(tmp_path / "Foo.ipa", foo_members())


@pytest.fixture()
def foo_ipa_no_manifest(tmp_path: Path) -> Path:
    return build_ipa(tmp_path / "FooNoManifest.ipa", foo_members(with_manifest=False))


@pytest.fixture()
def staging_parent(tmp_path: Path) -> Path:
    path = tmp_path / "staging"
    path.mkdir()
    return path
