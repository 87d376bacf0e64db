"""Binary property list (bplist00) reader and writer."""

from __future__ import annotations

import datetime as _dt
import struct

from sinfpatch.errors import MalformedData, UnrepresentableValue
from sinfpatch.plist.values import (
    MAX_DEPTH,
    PArray,
    PBoolean,
    PData,
    PDate,
    PDict,
    PInteger,
    PReal,
    PString,
    PropertyValue,
)

BPLIST_MAGIC = b"bplist00"
_TRAILER = struct.Struct(">6xBBQQQ")
_EPOCH = _dt.datetime(2001, 1, 1)
_VALID_WIDTHS = (1, 2, 4, 8)

_MARKER_FALSE = 0x08
_MARKER_TRUE = 0x09
_MARKER_INT = 0x10
_MARKER_REAL = 0x20
_MARKER_DATE = 0x33
_MARKER_DATA = 0x40
_MARKER_ASCII = 0x50
_MARKER_UTF16 = 0x60
_MARKER_ARRAY = 0xA0
_MARKER_DICT = 0xD0


def _width_for(value: int) -> int:
    if value < 1 << 8:
        return 1
    if value < 1 << 16:
        return 2
    if value < 1 << 32:
        return 4
    return 8


def _pack_uint(value: int, width: int) -> bytes:
    return value.to_bytes(width, "big")


# -- writer -----------------------------------------------------------------


def _encode_int(value: int) -> bytes:
    if value < 0:
        if value < -(1 << 63):
            raise UnrepresentableValue(f"integer too small for binary plist: {value}")
        return struct.pack(">Bq", _MARKER_INT | 3, value)
    if value < 1 << 8:
        return struct.pack(">BB", _MARKER_INT, value)
    if value < 1 << 16:
        return struct.pack(">BH", _MARKER_INT | 1, value)
    if value < 1 << 32:
        return struct.pack(">BL", _MARKER_INT | 2, value)
    if value < 1 << 63:
        return struct.pack(">Bq", _MARKER_INT | 3, value)
    if value < 1 << 64:
        return bytes([_MARKER_INT | 4]) + value.to_bytes(16, "big", signed=True)
    raise UnrepresentableValue(f"integer too large for binary plist: {value}")


def _encode_header(marker: int, count: int) -> bytes:
    if count < 15:
        return bytes([marker | count])
    return bytes([marker | 0x0F]) + _encode_int(count)


def _encode_scalar(value: PropertyValue) -> bytes:
    if isinstance(value, PBoolean):
        return bytes([_MARKER_TRUE if value.value else _MARKER_FALSE])
    if isinstance(value, PInteger):
        return _encode_int(value.value)
    if isinstance(value, PReal):
        return struct.pack(">Bd", _MARKER_REAL | 3, value.value)
    if isinstance(value, PDate):
        seconds = (value.value - _EPOCH).total_seconds()
        return struct.pack(">Bd", _MARKER_DATE, seconds)
    if isinstance(value, PData):
        return _encode_header(_MARKER_DATA, len(value.value)) + value.value
    if isinstance(value, PString):
        text = value.value
        if text.isascii():
            return _encode_header(_MARKER_ASCII, len(text)) + text.encode("ascii")
        raw = text.encode("utf-16be")
        return _encode_header(_MARKER_UTF16, len(raw) // 2) + raw
    raise TypeError(f"not a scalar property value: {type(value).__name__}")


class _Writer:
    """Flattens a tree into an object table, then serialises it.

    Object ids are assigned parent-first; scalars with identical encodings
    share one id.
    """

    def __init__(self) -> None:
        # each slot holds encoded scalar bytes, or (marker, [child ids...])
        self._objects: list[bytes | tuple[int, list[int]]] = []
        self._scalar_ids: dict[bytes, int] = {}

    def _flatten(self, value: PropertyValue, depth: int = 0) -> int:
        if depth > MAX_DEPTH:
            raise UnrepresentableValue(f"property list nested deeper than {MAX_DEPTH} levels")
        if isinstance(value, (PArray, PDict)):
            obj_id = len(self._objects)
            self._objects.append(b"")
            if isinstance(value, PArray):
                refs = [self._flatten(item, depth + 1) for item in value.items]
                self._objects[obj_id] = (_MARKER_ARRAY, refs)
            else:
                keys = [self._flatten(PString(key), depth + 1) for key, _ in value.entries]
                values = [self._flatten(item, depth + 1) for _, item in value.entries]
                self._objects[obj_id] = (_MARKER_DICT, keys + values)
            return obj_id

        encoded = _encode_scalar(value)
        obj_id = self._scalar_ids.get(encoded)
        if obj_id is None:
            obj_id = len(self._objects)
            self._objects.append(encoded)
            self._scalar_ids[encoded] = obj_id
        return obj_id

    def write(self, root: PropertyValue) -> bytes:
        top = self._flatten(root)
        ref_size = _width_for(len(self._objects))

        out = bytearray(BPLIST_MAGIC)
        offsets: list[int] = []
        for obj in self._objects:
            offsets.append(len(out))
            if isinstance(obj, bytes):
                out += obj
                continue
            marker, refs = obj
            count = len(refs) // 2 if marker == _MARKER_DICT else len(refs)
            out += _encode_header(marker, count)
            for ref in refs:
                out += _pack_uint(ref, ref_size)

        table_offset = len(out)
        offset_size = _width_for(table_offset)
        for offset in offsets:
            out += _pack_uint(offset, offset_size)
        out += _TRAILER.pack(offset_size, ref_size, len(self._objects), top, table_offset)
        return bytes(out)


def encode(value: PropertyValue) -> bytes:
    try:
        return _Writer().write(value)
    except RecursionError as exc:
        raise UnrepresentableValue("property list nested too deeply") from exc


# -- reader -----------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._memo: dict[int, PropertyValue] = {}
        self._active: set[int] = set()

    def _fail(self, detail: str) -> MalformedData:
        return MalformedData(f"binary plist: {detail}")

    def _read_trailer(self) -> None:
        data = self._data
        if len(data) < len(BPLIST_MAGIC) + _TRAILER.size + 1:
            raise self._fail("buffer too short")
        (
            self._offset_size,
            self._ref_size,
            self._num_objects,
            self._top_object,
            self._table_offset,
        ) = _TRAILER.unpack_from(data, len(data) - _TRAILER.size)

        if self._offset_size not in _VALID_WIDTHS:
            raise self._fail(f"invalid offset width {self._offset_size}")
        if self._ref_size not in _VALID_WIDTHS:
            raise self._fail(f"invalid object reference width {self._ref_size}")
        if self._num_objects == 0:
            raise self._fail("object table is empty")
        if self._top_object >= self._num_objects:
            raise self._fail("root object index out of range")
        table_end = self._table_offset + self._num_objects * self._offset_size
        if self._table_offset < len(BPLIST_MAGIC) or table_end > len(data) - _TRAILER.size:
            raise self._fail("offset table out of range")

    def _uint(self, pos: int, width: int) -> int:
        if pos < 0 or pos + width > self._table_offset:
            raise self._fail(f"read past object area at {pos}")
        return int.from_bytes(self._data[pos:pos + width], "big")

    def _slice(self, pos: int, length: int) -> bytes:
        if length < 0 or pos + length > self._table_offset:
            raise self._fail(f"object at {pos} overruns object area")
        return self._data[pos:pos + length]

    def _object_offset(self, ref: int) -> int:
        if ref >= self._num_objects:
            raise self._fail(f"object reference {ref} out of range")
        pos = self._table_offset + ref * self._offset_size
        offset = int.from_bytes(self._data[pos:pos + self._offset_size], "big")
        if offset < len(BPLIST_MAGIC) or offset >= self._table_offset:
            raise self._fail(f"object offset {offset} out of range")
        return offset

    def _read_count(self, pos: int, low: int) -> tuple[int, int]:
        """Return (count, position of payload) for a sized object."""
        if low != 0x0F:
            return low, pos + 1
        marker = self._uint(pos + 1, 1)
        if marker & 0xF0 != _MARKER_INT:
            raise self._fail(f"expected integer length at {pos + 1}")
        width = 1 << (marker & 0x0F)
        if width > 8:
            raise self._fail(f"length field too wide at {pos + 1}")
        return self._uint(pos + 2, width), pos + 2 + width

    def read(self) -> PropertyValue:
        self._read_trailer()
        return self._read_object(self._top_object, 0)

    def _read_object(self, ref: int, depth: int) -> PropertyValue:
        if ref in self._memo:
            return self._memo[ref]
        if ref in self._active:
            raise self._fail(f"reference cycle through object {ref}")
        if depth > MAX_DEPTH:
            raise self._fail(f"nesting deeper than {MAX_DEPTH} levels")

        self._active.add(ref)
        try:
            value = self._decode_at(self._object_offset(ref), depth)
        finally:
            self._active.discard(ref)
        self._memo[ref] = value
        return value

    def _decode_at(self, pos: int, depth: int) -> PropertyValue:
        token = self._uint(pos, 1)
        high, low = token & 0xF0, token & 0x0F

        if token == _MARKER_FALSE:
            return PBoolean(False)
        if token == _MARKER_TRUE:
            return PBoolean(True)
        if high == _MARKER_INT:
            width = 1 << low
            if width > 16:
                raise self._fail(f"integer width {width} at {pos}")
            raw = self._slice(pos + 1, width)
            return PInteger(int.from_bytes(raw, "big", signed=width >= 8))
        if token == _MARKER_REAL | 2:
            return PReal(struct.unpack(">f", self._slice(pos + 1, 4))[0])
        if token == _MARKER_REAL | 3:
            return PReal(struct.unpack(">d", self._slice(pos + 1, 8))[0])
        if token == _MARKER_DATE:
            seconds = struct.unpack(">d", self._slice(pos + 1, 8))[0]
            try:
                return PDate(_EPOCH + _dt.timedelta(seconds=seconds))
            except (OverflowError, ValueError) as exc:
                raise self._fail(f"date out of range at {pos}") from exc
        if high == _MARKER_DATA:
            count, start = self._read_count(pos, low)
            return PData(self._slice(start, count))
        if high == _MARKER_ASCII:
            count, start = self._read_count(pos, low)
            try:
                return PString(self._slice(start, count).decode("ascii"))
            except UnicodeDecodeError as exc:
                raise self._fail(f"invalid ASCII string at {pos}") from exc
        if high == _MARKER_UTF16:
            count, start = self._read_count(pos, low)
            try:
                return PString(self._slice(start, count * 2).decode("utf-16be"))
            except UnicodeDecodeError as exc:
                raise self._fail(f"invalid UTF-16 string at {pos}") from exc
        if high == _MARKER_ARRAY:
            count, start = self._read_count(pos, low)
            refs = self._refs(start, count)
            return PArray(tuple([self._read_object(r, depth + 1) for r in refs]))
        if high == _MARKER_DICT:
            count, start = self._read_count(pos, low)
            refs = self._refs(start, count * 2)
            entries = []
            for key_ref, value_ref in zip(refs[:count], refs[count:]):
                key = self._read_object(key_ref, depth + 1)
                if not isinstance(key, PString):
                    raise self._fail(f"non-string dict key at {pos}")
                entries.append((key.value, self._read_object(value_ref, depth + 1)))
            try:
                return PDict(tuple(entries))
            except ValueError as exc:
                raise self._fail(str(exc)) from exc

        raise self._fail(f"unsupported object type 0x{token:02x} at {pos}")

    def _refs(self, start: int, count: int) -> list[int]:
        self._slice(start, count * self._ref_size)
        return [self._uint(start + i * self._ref_size, self._ref_size) for i in range(count)]


def decode(data: bytes) -> PropertyValue:
    if not data.startswith(BPLIST_MAGIC):
        raise MalformedData("binary plist: missing bplist00 header")
    try:
        return _Reader(data).read()
    except RecursionError as exc:
        raise MalformedData("binary plist: nested too deeply") from exc
