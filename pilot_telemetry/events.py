from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

Value = str | int | float | bool


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """What a producer reports: an event name plus loosely typed attributes.

    Attribute values may be anything reasonably scalar (enums, datetimes,
    numbers, strings); `normalize` turns them into wire-safe `Value`s.
    """

    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Event:
    name: str
    attributes: Mapping[str, Value]
    timestamp: datetime


def _coerce(value: Any) -> Value | None:
    # bool must be checked before int (bool is an int subclass).
    if isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return _coerce(value.value)
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.timestamp()
    if value is None:
        return None
    return str(value)


def normalize(event: DomainEvent, *, now: datetime | None = None) -> Event:
    """Build an immutable `Event` from a producer-level description.

    None-valued attributes are dropped; everything else is coerced to a scalar.
    """

    name = event.name.strip()
    if not name:
        raise ValueError("event name must not be empty")

    attrs: dict[str, Value] = {}
    for key, raw in event.attributes.items():
        value = _coerce(raw)
        if value is not None:
            attrs[str(key)] = value

    return Event(
        name=name,
        attributes=MappingProxyType(attrs),
        timestamp=now or datetime.now(tz=UTC),
    )
