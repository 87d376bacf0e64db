"""Property list codec."""

from sinfpatch.plist.codec import (
    BPLIST_MAGIC,
    decode,
    decode_xml,
    encode_binary,
    is_binary_plist,
    looks_like_xml_plist,
)
from sinfpatch.plist.values import (
    PArray,
    PBoolean,
    PData,
    PDate,
    PDict,
    PInteger,
    PReal,
    PString,
    PropertyValue,
    from_python,
    to_python,
)

__all__ = [
    "BPLIST_MAGIC",
    "decode",
    "decode_xml",
    "encode_binary",
    "is_binary_plist",
    "looks_like_xml_plist",
    "PArray",
    "PBoolean",
    "PData",
    "PDate",
    "PDict",
    "PInteger",
    "PReal",
    "PString",
    "PropertyValue",
    "from_python",
    "to_python",
]
