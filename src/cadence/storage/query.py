"""Mongo-style filter matching and sorting over plain document dicts.

Shared by every DocumentStore backend so filters behave identically
regardless of where documents live.

Supported filter forms::

    {"user_id": "u-1"}                              # equality
    {"timestamp": {"$gte": start, "$lte": end}}     # range
    {"predicted_time_to_complete": {"$exists": True}}
    {"category": {"$in": ["work", "health"]}}

``$exists: True`` matches fields that are present and not None.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

Document = dict[str, Any]
Filter = dict[str, Any]
SortSpec = Sequence[tuple[str, int]]

_MISSING = object()


def _is_operator_clause(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


def _compare(op: str, value: Any, operand: Any) -> bool:
    if value is _MISSING or value is None or operand is None:
        return False
    try:
        if op == "$gte":
            return bool(value >= operand)
        if op == "$gt":
            return bool(value > operand)
        if op == "$lte":
            return bool(value <= operand)
        return bool(value < operand)
    except TypeError:
        return False


def _apply_operator(op: str, value: Any, operand: Any) -> bool:
    if op in ("$gte", "$gt", "$lte", "$lt"):
        return _compare(op, value, operand)
    if op == "$ne":
        return (None if value is _MISSING else value) != operand
    if op == "$in":
        return value is not _MISSING and value in operand
    if op == "$exists":
        present = value is not _MISSING and value is not None
        return present == bool(operand)
    raise ValueError(f"Unsupported filter operator: {op}")


def matches(document: Document, filter: Filter | None) -> bool:  # noqa: A002
    """Return True when document satisfies every clause of filter."""
    if not filter:
        return True
    for key, condition in filter.items():
        value = document.get(key, _MISSING)
        if _is_operator_clause(condition):
            for op, operand in condition.items():
                if not _apply_operator(op, value, operand):
                    return False
        elif (None if value is _MISSING else value) != condition:
            return False
    return True


def sort_documents(documents: Iterable[Document], sort: SortSpec | None) -> list[Document]:
    """Stable multi-key sort; direction 1 ascending, -1 descending.

    None and missing values sort before any real value in ascending order.
    """
    result = list(documents)
    if not sort:
        return result
    for key, direction in reversed(list(sort)):
        result.sort(
            key=lambda d: (d.get(key) is not None, d.get(key)),
            reverse=direction < 0,
        )
    return result


def equality_fields(filter: Filter | None) -> dict[str, str]:  # noqa: A002
    """Top-level clauses that are plain string equality.

    Backends can push these down to an index; everything else is evaluated
    with matches().
    """
    if not filter:
        return {}
    return {k: v for k, v in filter.items() if isinstance(v, str)}
