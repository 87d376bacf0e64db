"""Property list decoding (binary or XML) and binary encoding."""

from __future__ import annotations

import binascii
import plistlib
from xml.parsers.expat import ExpatError

from sinfpatch.errors import MalformedData, UnrecognizedFormat
from sinfpatch.plist import _binary
from sinfpatch.plist.values import PropertyValue, from_python

BPLIST_MAGIC = _binary.BPLIST_MAGIC
_XML_MARKERS = (b"<?xml", b"<plist")
_XML_PARSE_ERRORS = (
    ExpatError,
    ValueError,
    TypeError,
    AttributeError,
    KeyError,
    IndexError,
    OverflowError,
    RecursionError,
    binascii.Error,
)


def is_binary_plist(data: bytes) -> bool:
    return data[: len(BPLIST_MAGIC)] == BPLIST_MAGIC


def looks_like_xml_plist(data: bytes) -> bool:
    return any(marker in data for marker in _XML_MARKERS)


def decode_xml(data: bytes) -> PropertyValue:
    """Decode an XML property list.

    Raises:
        UnrecognizedFormat: no `<?xml` or `<plist` marker in the buffer.
        MalformedData: the XML is not a well-formed property list.
    """
    if not looks_like_xml_plist(data):
        raise UnrecognizedFormat("no XML property list root tag found")
    # plistlib surfaces bad <date>/<integer> text as AttributeError/ValueError
    try:
        loaded = plistlib.loads(data, fmt=plistlib.FMT_XML)
    except _XML_PARSE_ERRORS as exc:
        raise MalformedData(f"XML plist: {type(exc).__name__}: {str(exc)[:200]}") from exc
    try:
        return from_python(loaded)
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedData(f"XML plist: {str(exc)[:200]}") from exc


def decode(data: bytes) -> PropertyValue:
    """Decode a property list in either encoding.

    A buffer carrying the `bplist00` header is only ever read as binary;
    otherwise it must look like XML.
    """
    data = bytes(data)
    if is_binary_plist(data):
        return _binary.decode(data)
    if looks_like_xml_plist(data):
        return decode_xml(data)
    raise UnrecognizedFormat("buffer is neither a binary nor an XML property list")


def encode_binary(value: PropertyValue) -> bytes:
    """Serialise a tree as bplist00. Same tree in, identical bytes out."""
    return _binary.encode(value)
