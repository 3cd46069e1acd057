"""Filter and ordering vocabulary shared by all channel implementations."""

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, NamedTuple

from ..models import format_timestamp

OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in")

# column -> value (equality) or column -> (operator, value)
Filters = Mapping[str, Any]


class Order(NamedTuple):
    """Sort specification for query()."""

    column: str
    ascending: bool = True


class Condition(NamedTuple):
    column: str
    op: str
    value: Any


def normalize_value(value: Any) -> Any:
    """Convert Python values to their wire/storage representation."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(v) for v in value]
    return value


def normalize_filters(filters: Filters | None) -> list[Condition]:
    """Expand a filter mapping into validated conditions."""
    conditions = []
    for column, spec in (filters or {}).items():
        if isinstance(spec, tuple):
            if len(spec) != 2:
                raise ValueError(f"Filter for {column!r} must be (operator, value)")
            op, value = spec
        else:
            op, value = "eq", spec

        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if op == "in" and not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError(f"'in' filter for {column!r} needs a collection")

        conditions.append(Condition(column, op, normalize_value(value)))
    return conditions


def _compare(actual: Any, op: str, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op == "in":
        return actual in expected
    if actual is None or expected is None:
        return False
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    if op == "lt":
        return actual < expected
    return actual <= expected


def row_matches(row: Mapping[str, Any], filters: Filters | None) -> bool:
    """Evaluate filters against a row in Python (used by change feeds)."""
    return all(
        _compare(normalize_value(row.get(c.column)), c.op, c.value)
        for c in normalize_filters(filters)
    )
