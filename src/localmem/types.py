"""
localmem Types -- closed enumerations and JSON-like value checks.

``MemoryKind`` is the only set of memory kinds the core accepts. Callers
validate raw strings once with ``parse_kind`` / ``parse_kinds`` at the edge;
everything past that point handles ``MemoryKind`` members only.
"""

import math
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from localmem.errors import ValidationError


class MemoryKind(str, Enum):
    """Kinds of memory a bag can hold."""

    SUMMARY = "summary"
    PREFERENCE = "preference"
    CONSTRAINT = "constraint"
    DECISION = "decision"
    FACT = "fact"
    NOTE = "note"

    def __str__(self) -> str:
        return self.value


SUPPORTED_KINDS = tuple(k.value for k in MemoryKind)

JsonValue = Union[str, int, float, bool, None, List["JsonValue"], Dict[str, "JsonValue"]]

_MAX_SOURCE_DEPTH = 32


def parse_kind(value: Any) -> MemoryKind:
    """Coerce a raw value into a MemoryKind or raise ValidationError."""
    if isinstance(value, MemoryKind):
        return value
    if isinstance(value, str):
        try:
            return MemoryKind(value.strip().lower())
        except ValueError:
            pass
    raise ValidationError(f"unsupported kind: {value}")


def parse_kinds(values: Optional[Iterable[Any]]) -> List[MemoryKind]:
    """Validate a collection of kinds, de-duplicating while keeping order."""
    if values is None:
        return []
    if isinstance(values, (str, bytes)):
        raise ValidationError("kinds must be a list")
    seen: Dict[MemoryKind, None] = {}
    for value in values:
        seen.setdefault(parse_kind(value), None)
    return list(seen)


def _check_json(value: Any, path: str, depth: int) -> None:
    if depth > _MAX_SOURCE_DEPTH:
        raise ValidationError(f"source nested too deeply at {path}")
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"source value at {path} is not a finite number")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_json(item, f"{path}[{i}]", depth + 1)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(f"source key at {path} must be a string")
            _check_json(item, f"{path}.{key}", depth + 1)
        return
    raise ValidationError(f"source value at {path} has unsupported type {type(value).__name__}")


def validate_source(source: Any) -> Dict[str, JsonValue]:
    """Check that *source* is a string-keyed map of JSON-like values."""
    if source is None:
        return {}
    if not isinstance(source, dict):
        raise ValidationError("source must be an object")
    _check_json(source, "source", 0)
    return dict(source)


class _Unset:
    """Marker for 'field omitted' where None is a meaningful value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()
