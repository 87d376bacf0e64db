"""Typed input contracts for sinf injection requests."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator


@dataclass(frozen=True)
class SinfBlob:
    """Decoded DRM payload; `index` is the caller-supplied ordinal."""

    index: int
    data: bytes


def decode_transport_base64(text: str) -> bytes:
    """Strict base64 decode; whitespace (line wrapping) is tolerated."""
    compact = "".join(str(text).split())
    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc


class SinfRecord(BaseModel):
    """One sinf as it arrives over the wire: `{"id": 0, "sinf": "<base64>"}`."""

    model_config = ConfigDict(extra="ignore")

    id: int
    sinf: str

    @field_validator("sinf")
    @classmethod
    def _check_base64(cls, value: str) -> str:
        decode_transport_base64(value)
        return value

    def to_blob(self) -> SinfBlob:
        return SinfBlob(index=self.id, data=decode_transport_base64(self.sinf))


_SINF_RECORDS = TypeAdapter(list[SinfRecord])


def parse_sinf_records(payload: Any) -> list[SinfRecord]:
    return _SINF_RECORDS.validate_python(payload)


def load_sinf_blobs(path: Path) -> list[SinfBlob]:
    """Read a JSON array of sinf records and decode each payload once."""
    loaded = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    if isinstance(loaded, dict) and "sinfs" in loaded:
        loaded = loaded["sinfs"]
    if not isinstance(loaded, list):
        raise ValueError(f"{path} must be a JSON array of sinf records")
    return [record.to_blob() for record in parse_sinf_records(loaded)]
