"""Typed property-list tree.

Every node is one of eight frozen variants. Containers hold other variants
only, so a decoded tree is immutable and safe to share between references.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Iterator, Union


@dataclass(frozen=True)
class PString:
    value: str


@dataclass(frozen=True)
class PInteger:
    value: int


@dataclass(frozen=True)
class PReal:
    value: float


@dataclass(frozen=True)
class PBoolean:
    value: bool


@dataclass(frozen=True)
class PData:
    value: bytes


@dataclass(frozen=True)
class PDate:
    """Point in time, stored as a naive UTC datetime."""

    value: _dt.datetime

    def __post_init__(self) -> None:
        if self.value.tzinfo is not None:
            naive = self.value.astimezone(_dt.timezone.utc).replace(tzinfo=None)
            object.__setattr__(self, "value", naive)


@dataclass(frozen=True)
class PArray:
    items: tuple["PropertyValue", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator["PropertyValue"]:
        return iter(self.items)

    def __getitem__(self, index: int) -> "PropertyValue":
        return self.items[index]


@dataclass(frozen=True, eq=False)
class PDict:
    """Mapping from string keys to values, insertion order preserved.

    Equality ignores key order.
    """

    entries: tuple[tuple[str, "PropertyValue"], ...] = ()
    _index: dict[str, "PropertyValue"] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        entries = tuple((str(k), v) for k, v in self.entries)
        index: dict[str, PropertyValue] = {}
        for key, value in entries:
            if key in index:
                raise ValueError(f"duplicate dict key: {key!r}")
            index[key] = value
        object.__setattr__(self, "entries", entries)
        object.__setattr__(self, "_index", index)

    @classmethod
    def from_mapping(cls, mapping: dict[str, "PropertyValue"]) -> "PDict":
        return cls(tuple(mapping.items()))

    def get(self, key: str, default: Any = None) -> Any:
        return self._index.get(key, default)

    def keys(self) -> list[str]:
        return [key for key, _ in self.entries]

    def items(self) -> tuple[tuple[str, "PropertyValue"], ...]:
        return self.entries

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> "PropertyValue":
        return self._index[key]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PDict):
            return NotImplemented
        return self._index == other._index

    def __hash__(self) -> int:
        return hash(frozenset(self._index.items()))


PropertyValue = Union[PString, PInteger, PReal, PBoolean, PData, PDate, PArray, PDict]

# Deepest node level accepted anywhere (root is level 0). Kept well below the
# interpreter recursion limit; every recursive walk checks it.
MAX_DEPTH = 100


def from_python(obj: Any, _depth: int = 0) -> PropertyValue:
    """Build a tree from plain Python containers (as returned by plistlib).

    Raises:
        TypeError: unsupported value or non-string dict key.
        ValueError: nesting deeper than `MAX_DEPTH`.
    """
    if _depth > MAX_DEPTH:
        raise ValueError(f"property list nested deeper than {MAX_DEPTH} levels")
    # bool before int: bool is an int subclass
    if isinstance(obj, bool):
        return PBoolean(obj)
    if isinstance(obj, int):
        return PInteger(obj)
    if isinstance(obj, float):
        return PReal(obj)
    if isinstance(obj, str):
        return PString(obj)
    if isinstance(obj, (bytes, bytearray)):
        return PData(bytes(obj))
    if isinstance(obj, _dt.datetime):
        return PDate(obj)
    if isinstance(obj, (list, tuple)):
        return PArray(tuple([from_python(item, _depth + 1) for item in obj]))
    if isinstance(obj, dict):
        entries = []
        for key, value in obj.items():
            if not isinstance(key, str):
                raise TypeError(f"dict keys must be strings, got {type(key).__name__}")
            entries.append((key, from_python(value, _depth + 1)))
        return PDict(tuple(entries))
    raise TypeError(f"unsupported property list type: {type(obj).__name__}")


def to_python(value: PropertyValue) -> Any:
    if isinstance(value, (PString, PInteger, PReal, PBoolean, PData, PDate)):
        return value.value
    if isinstance(value, PArray):
        return [to_python(item) for item in value.items]
    if isinstance(value, PDict):
        return {key: to_python(item) for key, item in value.entries}
    raise TypeError(f"not a property value: {type(value).__name__}")
