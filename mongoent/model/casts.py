"""
Cast declarations and value coercion.

A cast is either a Primitive (one of the fixed CastKind coercions) or a Custom
callable. Model.casts accepts the shorthand forms and as_cast normalizes them:

    "int"            -> Primitive(CastKind.INTEGER)
    my_fn            -> Custom(my_fn)
    [my_fn]          -> Custom(my_fn, whole_array=True)

Invariants:
    - Unknown kind names cast to passthrough (CastKind.MIXED)
    - Malformed input never raises; the kind's empty default is returned instead
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..errors import UsageError
from ..utils import is_empty, to_utc, utc_now

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class CastKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    LOCATION = "location"
    OBJECT = "object"
    ARRAY = "array"
    LOCALIZED = "localized"
    MIXED = "mixed"

    @classmethod
    def from_str(cls, name: str) -> CastKind:
        """Resolve a kind name or alias; unknown names are passthrough."""
        aliases = {"int": cls.INTEGER, "bool": cls.BOOLEAN, "any": cls.MIXED}
        if name in aliases:
            return aliases[name]
        try:
            return cls(name)
        except ValueError:
            logger.debug(f"Unknown cast kind '{name}', values pass through unchanged")
            return cls.MIXED


CustomCastFn = Callable[[Any, str, "Model"], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class Primitive:
    kind: CastKind


@dataclass(frozen=True)
class Custom:
    """Custom cast function.

    Attributes:
        fn: Called as fn(value, column, model); may be a coroutine function
        whole_array: Receive a list value whole instead of element-wise
    """

    fn: CustomCastFn
    whole_array: bool = False


Cast = Union[Primitive, Custom]
CastSpec = Union[str, CustomCastFn, List[CustomCastFn], Cast]


def as_cast(spec: CastSpec) -> Cast:
    """Normalize a cast declaration.

    Raises:
        UsageError: If the declaration is none of the accepted shapes
    """
    if isinstance(spec, (Primitive, Custom)):
        return spec
    if isinstance(spec, CastKind):
        return Primitive(spec)
    if isinstance(spec, str):
        return Primitive(CastKind.from_str(spec))
    if isinstance(spec, (list, tuple)) and len(spec) == 1 and callable(spec[0]):
        return Custom(spec[0], whole_array=True)
    if callable(spec):
        return Custom(spec)
    raise UsageError(f"Invalid cast declaration: {spec!r}")


def cast_value(value: Any, kind: CastKind, date_format: str = "%d-%m-%Y") -> Any:
    """Coerce a value with a primitive cast kind."""
    empty = is_empty(value)

    if kind is CastKind.STRING:
        return "" if empty else str(value).strip()

    if kind is CastKind.NUMBER:
        return 0 if empty else _to_number(value)

    if kind is CastKind.INTEGER:
        return 0 if empty else _to_int(value)

    if kind is CastKind.FLOAT:
        if empty:
            return 0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0

    if kind is CastKind.BOOLEAN:
        if empty:
            return False
        if value == "true":
            return True
        if value in ("false", "0") or (value == 0 and not isinstance(value, bool)):
            return False
        return bool(value)

    if kind is CastKind.DATE:
        return _to_date(value, date_format)

    if kind is CastKind.LOCATION:
        return _to_location(value)

    if kind is CastKind.OBJECT:
        if empty:
            return {}
        if isinstance(value, str):
            return _parse_json(value, {})
        return value

    if kind is CastKind.ARRAY:
        if empty:
            return []
        if isinstance(value, str):
            return _parse_json(value, [])
        return value

    if kind is CastKind.LOCALIZED:
        if empty or not isinstance(value, list):
            return []
        return [
            {"localeCode": item.get("localeCode"), "value": item.get("value")}
            for item in value
            if isinstance(item, dict)
        ]

    return value


def _to_number(value: Any) -> Union[int, float]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        text = str(value).strip()
        return int(text) if re.fullmatch(r"[+-]?\d+", text) else float(text)
    except ValueError:
        return 0


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def _to_date(value: Any, date_format: str) -> Optional[datetime]:
    if isinstance(value, (datetime, date)):
        return to_utc(value)

    if is_empty(value):
        return None

    if isinstance(value, str):
        try:
            return to_utc(datetime.strptime(value, date_format))
        except ValueError:
            pass
        try:
            return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return utc_now()

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds
        if isinstance(value, float) and not math.isfinite(value):
            return utc_now()
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return utc_now()

    return utc_now()


def _to_location(value: Any) -> Optional[Dict[str, Any]]:
    if is_empty(value):
        return None
    if isinstance(value, dict) and value.get("type") == "Point":
        return value
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    try:
        return {"type": "Point", "coordinates": [float(value[0]), float(value[1])]}
    except (TypeError, ValueError):
        return None


def _parse_json(value: str, default: Any) -> Any:
    try:
        parsed = json.loads(value)
    except ValueError:
        return default
    return parsed if isinstance(parsed, type(default)) else default


def cast_model(model_cls: type, embedded_key: Union[str, Sequence[str]] = "embedded_data") -> Custom:
    """Cast ids (or lists of ids) into embedded projections of another model.

    Values that already carry an "id" are kept as they are.

    Args:
        model_cls: Model class the ids refer to
        embedded_key: Model attribute holding the projection, or a list of
            columns to copy

    Example:
        >>> class Post(Model):
        ...     casts = {"category": cast_model(Category)}
    """

    def project(record: Any) -> Any:
        if isinstance(embedded_key, str):
            return getattr(record, embedded_key)
        return record.only(list(embedded_key))

    async def embed_model(value: Any, column: str, model: Any) -> Any:
        from .model import Model

        if is_empty(value):
            return value

        if isinstance(value, list):
            if value and isinstance(value[0], dict) and value[0].get("id"):
                return value

            ids = [int(item.get("id")) if isinstance(item, dict) else int(item) for item in value]
            records = await model_cls.aggregate().where_in("id", ids).get()
            return [project(record) for record in records]

        if isinstance(value, dict) and value.get("id"):
            return value

        if isinstance(value, Model):
            record = value
        else:
            record = await model_cls.find(int(value))

        if record is None:
            return None

        return project(record)

    return Custom(embed_model, whole_array=True)
