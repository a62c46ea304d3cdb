"""
Filter expression parsing for the aggregate builder.

WhereExpression.parse turns the three where() call shapes into a filter
document:

    >>> WhereExpression.parse("age", 30)
    {'age': {'$eq': 30}}
    >>> WhereExpression.parse("age", ">=", 18)
    {'age': {'$gte': 18}}
    >>> WhereExpression.parse({"age": {"$gte": 18}})
    {'age': {'$gte': 18}}

Invariants:
    - like-family operands are regex-escaped before the pattern is built
    - between / notBetween expand to an inclusive range (or its negation)
    - datetime operands are normalized to aware UTC datetimes
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict

from ..errors import UsageError
from ..utils import to_utc


class WhereExpression:
    """Where operator table and parser."""

    operators: Dict[str, str] = {
        "=": "$eq",
        "!=": "$ne",
        "not": "$ne",
        ">": "$gt",
        ">=": "$gte",
        "<": "$lt",
        "<=": "$lte",
        "in": "$in",
        "nin": "$nin",
        "notIn": "$nin",
        "all": "$all",
        "exists": "$exists",
        "type": "$type",
        "mod": "$mod",
        "regex": "$regex",
        "between": "$between",
        "notBetween": "$between",
        "geoIntersects": "$geoIntersects",
        "geoWithin": "$geoWithin",
        "near": "$near",
        "nearSphere": "$nearSphere",
        "elemMatch": "$elemMatch",
        "size": "$size",
        "like": "$regex",
        "notLike": "$regex",
        "startsWith": "$regex",
        "endsWith": "$regex",
    }

    @classmethod
    def parse(cls, *args: Any) -> Dict[str, Any]:
        """Build a filter from (column, value), (column, operator, value) or (filter,).

        Raises:
            UsageError: On an unknown operator or a wrong number of arguments
        """
        if len(args) == 1 and isinstance(args[0], dict):
            return args[0]

        if len(args) == 2:
            column, value = args
            operator = "="
        elif len(args) == 3:
            column, operator, value = args
        else:
            raise UsageError(f"where() expects 1 to 3 arguments, got {len(args)}")

        if operator not in cls.operators:
            raise UsageError(f"Unknown where operator: {operator}", operator=operator)

        value = cls._normalize_dates(value)

        if operator == "between":
            return {column: {"$gte": value[0], "$lte": value[1]}}

        if operator == "notBetween":
            return {column: {"$not": {"$gte": value[0], "$lte": value[1]}}}

        if operator == "like":
            value = re.compile(re.escape(str(value)), re.IGNORECASE)
        elif operator == "notLike":
            return {column: {"$not": re.compile(re.escape(str(value)), re.IGNORECASE)}}
        elif operator == "startsWith":
            value = re.compile("^" + re.escape(str(value)), re.IGNORECASE)
        elif operator == "endsWith":
            value = re.compile(re.escape(str(value)) + "$", re.IGNORECASE)

        return {column: {cls.operators[operator]: value}}

    @staticmethod
    def _normalize_dates(value: Any) -> Any:
        if isinstance(value, date):
            return to_utc(value)
        if isinstance(value, (list, tuple)):
            return [to_utc(item) if isinstance(item, date) else item for item in value]
        return value


def to_operator(operator: str) -> str:
    """MongoDB operator for a where operator."""
    return WhereExpression.operators[operator]
