from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class IContains:
    text: str


@dataclass(frozen=True)
class AnyOf:
    """Case-insensitive substring match against any of ``texts``."""

    texts: tuple[str, ...]


@dataclass(frozen=True)
class Between:
    """Half-open range ``[start, end)``."""

    start: datetime
    end: datetime


Condition = Eq | IContains | AnyOf | Between
Filter = dict[str, Any]

ASC = 1
DESC = -1
Sort = list[tuple[str, int]]


def as_condition(value: Any) -> Condition:
    if isinstance(value, (Eq, IContains, AnyOf, Between)):
        return value
    return Eq(value)


def _contains(haystack: Any, needle: str) -> bool:
    if haystack is None:
        return False
    return needle.casefold() in str(haystack).casefold()


def condition_matches(value: Any, condition: Condition) -> bool:
    if isinstance(condition, Eq):
        return value == condition.value
    if isinstance(condition, IContains):
        return _contains(value, condition.text)
    if isinstance(condition, AnyOf):
        return any(_contains(value, text) for text in condition.texts)
    if isinstance(condition, Between):
        if not isinstance(value, datetime):
            return False
        return condition.start <= value < condition.end
    raise TypeError(f"unsupported condition: {condition!r}")


def matches(document: dict[str, Any], flt: Filter | None) -> bool:
    for field, raw in (flt or {}).items():
        if not condition_matches(document.get(field), as_condition(raw)):
            return False
    return True


def sort_documents(documents: list[dict[str, Any]], sort: Sort | None) -> list[dict[str, Any]]:
    ordered = list(documents)
    # Stable sorts applied from the least significant key.
    for field, direction in reversed(sort or []):
        present = [d for d in ordered if d.get(field) is not None]
        missing = [d for d in ordered if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=direction == DESC)
        ordered = present + missing
    return ordered
