"""Conversion between domain dataclasses and flat records.

Used by the SQL backend (ORM column values) and the JSON backend
(JSON-serializable dicts).
"""

import dataclasses
import types
import typing
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Any, TypeVar

from accredchain.models import as_utc

T = TypeVar("T")


@lru_cache(maxsize=None)
def _field_types(cls: type) -> dict[str, type]:
    """Map each dataclass field to its concrete (non-Optional) type."""
    hints = typing.get_type_hints(cls)
    resolved = {}
    for f in dataclasses.fields(cls):
        hint = hints[f.name]
        if typing.get_origin(hint) in (typing.Union, types.UnionType):
            args = [a for a in typing.get_args(hint) if a is not type(None)]
            hint = args[0] if len(args) == 1 else Any
        resolved[f.name] = hint
    return resolved


def to_record(obj: Any, *, as_json: bool = False) -> dict[str, Any]:
    """Flatten a dataclass into a dict of primitive values.

    Enums become their values. With ``as_json`` dates and datetimes become
    ISO-8601 strings.
    """
    record = {}
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif as_json and isinstance(value, (datetime, date)):
            value = value.isoformat()
        record[f.name] = value
    return record


def _coerce(kind: Any, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(kind, type) and issubclass(kind, Enum):
        return kind(value)
    if kind is datetime:
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        return as_utc(value)
    if kind is date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            return date.fromisoformat(value[:10])
    return value


def from_record(cls: type[T], data: Any) -> T:
    """Build a dataclass from a dict or an attribute-bearing object.

    Unknown keys are ignored; missing keys fall back to field defaults.
    """
    kwargs = {}
    for name, kind in _field_types(cls).items():
        if isinstance(data, dict):
            if name not in data:
                continue
            value = data[name]
        else:
            value = getattr(data, name)
        kwargs[name] = _coerce(kind, value)
    return cls(**kwargs)
