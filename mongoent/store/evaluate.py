"""
In-process evaluation of MongoDB filters, update documents and aggregation pipelines.

Used by InMemoryDocumentStore. The supported surface is the subset the models
and the aggregate builder emit:

- Filters: field equality (with array containment and compiled regex values),
  $eq $ne $gt $gte $lt $lte $in $nin $exists $regex $options $not $size $all
  $elemMatch $mod $type, plus $and $or $nor $expr
- Updates: $set $unset $inc $setOnInsert $push $pull, or an update pipeline of
  $set/$addFields/$unset/$project stages
- Stages: $match $project $addFields $set $unset $sort $limit $skip $sample
  $group $unwind $lookup $count
- Expressions: field paths, $add $subtract $multiply $ifNull $cond $size
  $first $last $arrayElemAt $year $month $dayOfMonth $eq $ne $gt $gte $lt
  $lte $and $or $not $in $concat $literal $toString

Anything else raises InvalidQueryError so tests fail loudly instead of
silently passing on an unsupported construct.
"""

from __future__ import annotations

import copy
import random
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import StoreError
from ..utils import MISSING, deep_get, deep_set, deep_unset


class InvalidQueryError(StoreError):
    """Filter, update or pipeline uses unsupported syntax."""

    def __init__(self, message: str) -> None:
        super().__init__(message, operation="evaluate")
        self.code = "INVALID_QUERY"


LookupResolver = Callable[[str], List[Dict[str, Any]]]

_TYPE_ALIASES: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "int": (int,),
    "long": (int,),
    "double": (float,),
    "number": (int, float),
    "bool": (bool,),
    "array": (list,),
    "object": (dict,),
    "date": (datetime,),
    "null": (type(None),),
}


# =========================
# Filters
# =========================
def match_filter(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Whether the document satisfies the filter."""
    if not isinstance(query, dict):
        raise InvalidQueryError("Filter must be a mapping")
    for key, cond in query.items():
        if key == "$and":
            if not all(match_filter(doc, clause) for clause in cond):
                return False
        elif key == "$or":
            if not any(match_filter(doc, clause) for clause in cond):
                return False
        elif key == "$nor":
            if any(match_filter(doc, clause) for clause in cond):
                return False
        elif key == "$expr":
            if not eval_expression(doc, cond):
                return False
        elif key.startswith("$"):
            raise InvalidQueryError(f"Unsupported top-level operator: {key}")
        elif not _match_field(doc, key, cond):
            return False
    return True


def _is_operator_doc(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(k.startswith("$") for k in cond)


def _match_field(doc: Dict[str, Any], dotted_key: str, cond: Any) -> bool:
    value = _resolve_path(doc, dotted_key)
    if _is_operator_doc(cond):
        options = cond.get("$options", "")
        for op, arg in cond.items():
            if op == "$options":
                continue
            if not _eval_operator(value, op, arg, options):
                return False
        return True
    return _equals(value, cond)


def _resolve_path(doc: Any, dotted_key: str) -> Any:
    """Resolve a path, collecting values through arrays of sub-documents."""
    cur = doc
    parts = dotted_key.split(".")
    for index, part in enumerate(parts):
        if isinstance(cur, dict):
            cur = cur.get(part, MISSING)
        elif isinstance(cur, list) and not part.isdigit():
            rest = ".".join(parts[index:])
            found = [_resolve_path(item, rest) for item in cur if isinstance(item, dict)]
            found = [item for item in found if item is not MISSING]
            return found if found else MISSING
        elif isinstance(cur, list):
            position = int(part)
            cur = cur[position] if position < len(cur) else MISSING
        else:
            return MISSING
        if cur is MISSING:
            return MISSING
    return cur


def _equals(value: Any, expected: Any) -> bool:
    if isinstance(expected, re.Pattern):
        return _regex_matches(value, expected)
    if expected is None:
        return value is MISSING or value is None
    if value is MISSING:
        return False
    if value == expected:
        return True
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_equals(item, expected) for item in value)
    return False


def _regex_matches(value: Any, pattern: Any, options: str = "") -> bool:
    if isinstance(value, list):
        return any(_regex_matches(item, pattern, options) for item in value)
    if not isinstance(value, str):
        return False
    if isinstance(pattern, re.Pattern):
        return pattern.search(value) is not None
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    return re.search(pattern, value, flags) is not None


def _compare(value: Any, arg: Any, check: Callable[[Any, Any], bool]) -> bool:
    if value is MISSING or value is None or arg is None:
        return False
    if isinstance(value, list):
        return any(_compare(item, arg, check) for item in value)
    try:
        return check(value, arg)
    except TypeError:
        return False


def _eval_operator(value: Any, op: str, arg: Any, options: str = "") -> bool:
    if op == "$eq":
        return _equals(value, arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op == "$gt":
        return _compare(value, arg, lambda a, b: a > b)
    if op == "$gte":
        return _compare(value, arg, lambda a, b: a >= b)
    if op == "$lt":
        return _compare(value, arg, lambda a, b: a < b)
    if op == "$lte":
        return _compare(value, arg, lambda a, b: a <= b)
    if op == "$in":
        return any(_equals(value, item) for item in arg)
    if op == "$nin":
        return not any(_equals(value, item) for item in arg)
    if op == "$exists":
        return (value is not MISSING) == bool(arg)
    if op == "$regex":
        return _regex_matches(value, arg, options)
    if op == "$not":
        if isinstance(arg, re.Pattern):
            return not _regex_matches(value, arg)
        if not isinstance(arg, dict):
            raise InvalidQueryError("$not requires an operator document or a regex")
        return not all(_eval_operator(value, sub_op, sub_arg, arg.get("$options", ""))
                       for sub_op, sub_arg in arg.items() if sub_op != "$options")
    if op == "$size":
        return isinstance(value, list) and len(value) == arg
    if op == "$all":
        return isinstance(value, list) and all(item in value for item in arg)
    if op == "$elemMatch":
        if not isinstance(value, list):
            return False
        for item in value:
            if isinstance(item, dict) and not _is_operator_doc(arg):
                if match_filter(item, arg):
                    return True
            elif all(_eval_operator(item, sub_op, sub_arg) for sub_op, sub_arg in arg.items()):
                return True
        return False
    if op == "$mod":
        divisor, remainder = arg
        return _compare(value, divisor, lambda a, b: a % b == remainder)
    if op == "$type":
        types = _TYPE_ALIASES.get(arg)
        if types is None:
            raise InvalidQueryError(f"Unsupported $type alias: {arg}")
        if value is MISSING:
            return False
        if isinstance(value, bool) and bool not in types:
            return False
        return isinstance(value, types)
    raise InvalidQueryError(f"Unsupported operator: {op}")


# =========================
# Expressions
# =========================
def eval_expression(doc: Dict[str, Any], expr: Any) -> Any:
    """Evaluate an aggregation expression against a document."""
    if isinstance(expr, str) and expr.startswith("$$"):
        if expr == "$$ROOT":
            return doc
        raise InvalidQueryError(f"Unsupported variable: {expr}")
    if isinstance(expr, str) and expr.startswith("$"):
        value = _resolve_path(doc, expr[1:])
        return None if value is MISSING else value
    if isinstance(expr, list):
        return [eval_expression(doc, item) for item in expr]
    if isinstance(expr, dict):
        if len(expr) == 1:
            op, arg = next(iter(expr.items()))
            if op.startswith("$"):
                return _eval_expression_operator(doc, op, arg)
        return {key: eval_expression(doc, value) for key, value in expr.items()}
    return expr


def _args(doc: Dict[str, Any], arg: Any) -> List[Any]:
    if isinstance(arg, list):
        return [eval_expression(doc, item) for item in arg]
    return [eval_expression(doc, arg)]


def _eval_expression_operator(doc: Dict[str, Any], op: str, arg: Any) -> Any:
    if op == "$literal":
        return arg
    if op == "$add":
        values = _args(doc, arg)
        if any(v is None for v in values):
            return None
        return sum(values)
    if op == "$subtract":
        left, right = _args(doc, arg)
        if left is None or right is None:
            return None
        return left - right
    if op == "$multiply":
        result = 1
        for value in _args(doc, arg):
            if value is None:
                return None
            result *= value
        return result
    if op == "$ifNull":
        values = _args(doc, arg)
        for value in values[:-1]:
            if value is not None:
                return value
        return values[-1]
    if op == "$cond":
        if isinstance(arg, dict):
            condition, then, otherwise = arg["if"], arg["then"], arg["else"]
        else:
            condition, then, otherwise = arg
        branch = then if eval_expression(doc, condition) else otherwise
        return eval_expression(doc, branch)
    if op == "$size":
        value = _args(doc, arg)[0]
        if not isinstance(value, list):
            raise InvalidQueryError("$size requires an array")
        return len(value)
    if op in ("$first", "$last"):
        value = _args(doc, arg)[0]
        if not isinstance(value, list):
            return value
        if not value:
            return None
        return value[0] if op == "$first" else value[-1]
    if op == "$arrayElemAt":
        array, position = _args(doc, arg)
        if not isinstance(array, list) or not -len(array) <= position < len(array):
            return None
        return array[position]
    if op in ("$year", "$month", "$dayOfMonth"):
        value = _args(doc, arg)[0]
        if not isinstance(value, datetime):
            return None
        return {"$year": value.year, "$month": value.month, "$dayOfMonth": value.day}[op]
    if op in ("$eq", "$ne", "$gt", "$gte", "$lt", "$lte"):
        left, right = _args(doc, arg)
        if op == "$eq":
            return left == right
        if op == "$ne":
            return left != right
        if left is None or right is None:
            return False
        return {
            "$gt": lambda: left > right,
            "$gte": lambda: left >= right,
            "$lt": lambda: left < right,
            "$lte": lambda: left <= right,
        }[op]()
    if op == "$and":
        return all(_args(doc, arg))
    if op == "$or":
        return any(_args(doc, arg))
    if op == "$not":
        return not _args(doc, arg)[0]
    if op == "$in":
        needle, haystack = _args(doc, arg)
        return needle in (haystack or [])
    if op == "$concat":
        values = _args(doc, arg)
        if any(v is None for v in values):
            return None
        return "".join(str(v) for v in values)
    if op == "$toString":
        value = _args(doc, arg)[0]
        return None if value is None else str(value)
    raise InvalidQueryError(f"Unsupported expression operator: {op}")


# =========================
# Updates
# =========================
def apply_update(doc: Dict[str, Any], update: Any, is_insert: bool = False) -> Dict[str, Any]:
    """Return a new document with the update document or pipeline applied."""
    if isinstance(update, list):
        result = copy.deepcopy(doc)
        for stage in update:
            result = _apply_update_stage(result, stage)
        return result

    if not isinstance(update, dict):
        raise InvalidQueryError("Update must be a mapping or a pipeline")

    new_doc = copy.deepcopy(doc)
    for op, changes in update.items():
        if op == "$set" or (op == "$setOnInsert" and is_insert):
            for key, value in changes.items():
                deep_set(new_doc, key, copy.deepcopy(value))
        elif op == "$setOnInsert":
            continue
        elif op == "$unset":
            keys = changes if isinstance(changes, list) else list(changes.keys())
            for key in keys:
                deep_unset(new_doc, key)
        elif op == "$inc":
            for key, value in changes.items():
                current = deep_get(new_doc, key, 0)
                if not isinstance(current, (int, float)):
                    raise InvalidQueryError(f"$inc requires a numeric field: {key}")
                deep_set(new_doc, key, current + value)
        elif op == "$push":
            for key, value in changes.items():
                array = list(deep_get(new_doc, key, None) or [])
                if isinstance(value, dict) and "$each" in value:
                    array.extend(copy.deepcopy(value["$each"]))
                else:
                    array.append(copy.deepcopy(value))
                deep_set(new_doc, key, array)
        elif op == "$pull":
            for key, value in changes.items():
                array = deep_get(new_doc, key, [])
                if not isinstance(array, list):
                    continue
                if isinstance(value, dict):
                    kept = [
                        item for item in array
                        if not (match_filter(item, value) if isinstance(item, dict)
                                and not _is_operator_doc(value) else _match_value(item, value))
                    ]
                else:
                    kept = [item for item in array if item != value]
                deep_set(new_doc, key, kept)
        else:
            raise InvalidQueryError(f"Unsupported update operator: {op}")
    return new_doc


def _match_value(value: Any, cond: Dict[str, Any]) -> bool:
    return all(_eval_operator(value, op, arg) for op, arg in cond.items())


def _apply_update_stage(doc: Dict[str, Any], stage: Dict[str, Any]) -> Dict[str, Any]:
    name, spec = _stage_parts(stage)
    if name in ("$set", "$addFields"):
        return _add_fields(doc, spec)
    if name == "$unset":
        return _unset_fields(doc, spec)
    if name == "$project":
        return _project(doc, spec)
    raise InvalidQueryError(f"Unsupported update pipeline stage: {name}")


# =========================
# Pipelines
# =========================
def _stage_parts(stage: Any) -> Tuple[str, Any]:
    if not isinstance(stage, dict) or len(stage) != 1:
        raise InvalidQueryError("Each pipeline stage must be a single-key mapping")
    return next(iter(stage.items()))


def run_pipeline(
    docs: List[Dict[str, Any]],
    pipeline: List[Dict[str, Any]],
    resolve_collection: Optional[LookupResolver] = None,
) -> List[Dict[str, Any]]:
    """Run an aggregation pipeline over copies of the given documents."""
    out = [copy.deepcopy(doc) for doc in docs]
    for stage in pipeline:
        name, spec = _stage_parts(stage)
        if name == "$match":
            out = [doc for doc in out if match_filter(doc, spec)]
        elif name == "$project":
            out = [_project(doc, spec) for doc in out]
        elif name in ("$addFields", "$set"):
            out = [_add_fields(doc, spec) for doc in out]
        elif name == "$unset":
            out = [_unset_fields(doc, spec) for doc in out]
        elif name == "$sort":
            out = _sort(out, spec)
        elif name == "$limit":
            out = out[:spec]
        elif name == "$skip":
            out = out[spec:]
        elif name == "$sample":
            out = random.sample(out, min(spec["size"], len(out)))
        elif name == "$group":
            out = _group(out, spec)
        elif name == "$unwind":
            out = _unwind(out, spec)
        elif name == "$count":
            out = [{spec: len(out)}] if out else []
        elif name == "$lookup":
            if resolve_collection is None:
                raise InvalidQueryError("$lookup requires a collection resolver")
            out = [_lookup(doc, spec, resolve_collection) for doc in out]
        else:
            raise InvalidQueryError(f"Unsupported aggregation stage: {name}")
    return out


def _project(doc: Dict[str, Any], spec: Dict[str, Any]) -> Dict[str, Any]:
    exclusions = [k for k, v in spec.items() if v in (0, False) and not isinstance(v, dict)]
    inclusions = {k: v for k, v in spec.items() if k not in exclusions}

    if not inclusions:
        result = copy.deepcopy(doc)
        for key in exclusions:
            deep_unset(result, key)
        return result

    result: Dict[str, Any] = {}
    if "_id" not in exclusions and "_id" in doc:
        result["_id"] = doc["_id"]
    for key, value in inclusions.items():
        if value is True or (isinstance(value, int) and not isinstance(value, bool) and value == 1):
            found = deep_get(doc, key, MISSING)
            if found is not MISSING:
                deep_set(result, key, copy.deepcopy(found))
        else:
            deep_set(result, key, eval_expression(doc, value))
    return result


def _add_fields(doc: Dict[str, Any], spec: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(doc)
    for key, value in spec.items():
        deep_set(result, key, eval_expression(doc, value))
    return result


def _unset_fields(doc: Dict[str, Any], spec: Any) -> Dict[str, Any]:
    keys = [spec] if isinstance(spec, str) else list(spec)
    result = copy.deepcopy(doc)
    for key in keys:
        deep_unset(result, key)
    return result


def _sort_key(value: Any) -> Tuple[int, Any]:
    if value is MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (2, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, datetime):
        return (4, value.timestamp())
    return (5, str(value))


def _sort(docs: List[Dict[str, Any]], spec: Dict[str, int]) -> List[Dict[str, Any]]:
    result = list(docs)
    for key, direction in reversed(list(spec.items())):
        result.sort(key=lambda d: _sort_key(deep_get(d, key, MISSING)), reverse=direction < 0)
    return result


def _group(docs: List[Dict[str, Any]], spec: Dict[str, Any]) -> List[Dict[str, Any]]:
    id_expr = spec.get("_id")
    accumulators = {k: v for k, v in spec.items() if k != "_id"}
    buckets: List[Tuple[Any, List[Dict[str, Any]]]] = []

    for doc in docs:
        key = eval_expression(doc, id_expr)
        for bucket_key, members in buckets:
            if bucket_key == key:
                members.append(doc)
                break
        else:
            buckets.append((key, [doc]))

    results = []
    for key, members in buckets:
        row: Dict[str, Any] = {"_id": key}
        for field_name, accumulator in accumulators.items():
            op, arg = _stage_parts(accumulator)
            values = [eval_expression(doc, arg) for doc in members]
            row[field_name] = _accumulate(op, values)
        results.append(row)
    return results


def _accumulate(op: str, values: List[Any]) -> Any:
    if op == "$sum":
        return sum(v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool))
    if op == "$avg":
        numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
        return sum(numbers) / len(numbers) if numbers else None
    if op == "$min":
        present = [v for v in values if v is not None]
        return min(present) if present else None
    if op == "$max":
        present = [v for v in values if v is not None]
        return max(present) if present else None
    if op == "$push":
        return values
    if op == "$addToSet":
        unique: List[Any] = []
        for value in values:
            if value not in unique:
                unique.append(value)
        return unique
    if op == "$first":
        return values[0] if values else None
    if op == "$last":
        return values[-1] if values else None
    raise InvalidQueryError(f"Unsupported group accumulator: {op}")


def _unwind(docs: List[Dict[str, Any]], spec: Any) -> List[Dict[str, Any]]:
    if isinstance(spec, str):
        spec = {"path": spec}
    path = spec["path"].lstrip("$")
    preserve = spec.get("preserveNullAndEmptyArrays", False)
    index_field = spec.get("includeArrayIndex") or None

    unwound = []
    for doc in docs:
        value = deep_get(doc, path, MISSING)
        if isinstance(value, list) and value:
            for position, item in enumerate(value):
                copied = copy.deepcopy(doc)
                deep_set(copied, path, item)
                if index_field:
                    copied[index_field] = position
                unwound.append(copied)
        elif isinstance(value, list) or value is MISSING or value is None:
            if preserve:
                copied = copy.deepcopy(doc)
                if isinstance(value, list):
                    deep_unset(copied, path)
                if index_field:
                    copied[index_field] = None
                unwound.append(copied)
        else:
            copied = copy.deepcopy(doc)
            if index_field:
                copied[index_field] = None
            unwound.append(copied)
    return unwound


def _lookup(
    doc: Dict[str, Any],
    spec: Dict[str, Any],
    resolve_collection: LookupResolver,
) -> Dict[str, Any]:
    if "let" in spec:
        raise InvalidQueryError("$lookup let variables are not supported")
    foreign_docs = resolve_collection(spec["from"])
    local_field = spec.get("localField")
    foreign_field = spec.get("foreignField")

    if local_field and foreign_field:
        local_value = _resolve_path(doc, local_field)
        local_values = local_value if isinstance(local_value, list) else [local_value]
        local_values = [None if v is MISSING else v for v in local_values]
        matched = [
            foreign for foreign in foreign_docs
            if any(_equals(_resolve_path(foreign, foreign_field), v) for v in local_values)
        ]
    else:
        matched = list(foreign_docs)

    if spec.get("pipeline"):
        matched = run_pipeline(matched, spec["pipeline"], resolve_collection)
    else:
        matched = [copy.deepcopy(foreign) for foreign in matched]

    result = copy.deepcopy(doc)
    deep_set(result, spec["as"], matched)
    return result
