"""
Document helpers shared by models, the aggregate builder and the in-memory store.

Dotted paths ("author.name") address nested mappings.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable

MISSING = object()


def deep_get(doc: dict, dotted_key: str, default: Any = None) -> Any:
    """Read a dotted path from a document."""
    cur: Any = doc
    for part in dotted_key.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return cur


def deep_set(doc: dict, dotted_key: str, value: Any) -> None:
    """Write a dotted path, creating intermediate mappings."""
    parts = dotted_key.split(".")
    cur = doc
    for part in parts[:-1]:
        if part not in cur or not isinstance(cur[part], dict):
            cur[part] = {}
        cur = cur[part]
    cur[parts[-1]] = value


def deep_unset(doc: dict, dotted_key: str) -> None:
    """Remove a dotted path if present."""
    parts = dotted_key.split(".")
    cur = doc
    for part in parts[:-1]:
        if part not in cur or not isinstance(cur[part], dict):
            return
        cur = cur[part]
    cur.pop(parts[-1], None)


def deep_has(doc: dict, dotted_key: str) -> bool:
    return deep_get(doc, dotted_key, MISSING) is not MISSING


def only(doc: dict, keys: Iterable[str]) -> dict:
    """Copy of the given dotted keys that exist in the document."""
    result: dict = {}
    for key in keys:
        value = deep_get(doc, key, MISSING)
        if value is not MISSING:
            deep_set(result, key, value)
    return result


def except_(doc: dict, keys: Iterable[str]) -> dict:
    """Shallow copy of the document without the given dotted keys."""
    result = {k: v for k, v in doc.items()}
    for key in keys:
        if "." in key:
            head = key.split(".", 1)[0]
            if isinstance(result.get(head), dict):
                result[head] = dict(result[head])
                deep_unset(result, key)
        else:
            result.pop(key, None)
    return result


def deep_merge(base: dict, incoming: dict) -> dict:
    """Recursively merge incoming into a copy of base; incoming wins."""
    merged = dict(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def is_empty(value: Any) -> bool:
    """None, empty string and empty containers are empty; 0 and False are not."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def to_utc(value: datetime | date) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime.

    Naive datetimes are taken to already be in UTC.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision (BSON dates store ms)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)
