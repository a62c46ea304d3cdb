"""
Aggregation expression helpers.

Small constructors for the accumulator and calendar expressions used with
group_by and project:

    >>> Product.aggregate().group_by("category", {"total": count(), "revenue": sum_("price")})
"""

from __future__ import annotations

from typing import Any, Dict


def column_name(column: str) -> str:
    """Field reference for a column ("price" -> "$price")."""
    return "$" + column.lstrip("$")


def _ref(value: Any) -> Any:
    return column_name(value) if isinstance(value, str) else value


def count() -> Dict[str, Any]:
    return {"$sum": 1}


def sum_(column: str | int) -> Dict[str, Any]:
    return {"$sum": _ref(column)}


def avg(column: str) -> Dict[str, Any]:
    return {"$avg": column_name(column)}


def min_(column: str) -> Dict[str, Any]:
    return {"$min": column_name(column)}


def max_(column: str) -> Dict[str, Any]:
    return {"$max": column_name(column)}


def first(column: str) -> Dict[str, Any]:
    return {"$first": column_name(column)}


def last(column: str) -> Dict[str, Any]:
    return {"$last": column_name(column)}


def push(column: str) -> Dict[str, Any]:
    return {"$push": column_name(column)}


def add_to_set(column: str) -> Dict[str, Any]:
    return {"$addToSet": column_name(column)}


def size(column: str) -> Dict[str, Any]:
    return {"$size": column_name(column)}


def year(column: str) -> Dict[str, Any]:
    return {"$year": column_name(column)}


def month(column: str) -> Dict[str, Any]:
    return {"$month": column_name(column)}


def day_of_month(column: str) -> Dict[str, Any]:
    return {"$dayOfMonth": column_name(column)}
