"""
Pipeline stages for the aggregate builder.

Each stage knows its MongoDB stage name and payload and renders itself with
parse(). Raw stages (plain dicts) pass through parse_pipelines unchanged.

Invariants:
    - parse() output is a single-key mapping whose key is the MongoDB stage name
    - Stage order is never changed by rendering
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from .expressions import column_name


class Pipeline:
    """A single aggregation stage.

    Attributes:
        name: Stage name without the leading "$" (match, group, ...)
        pipeline_data: Stage payload
    """

    def __init__(self, name: str, data: Any = None) -> None:
        self.name = name
        self.pipeline_data = data

    def data(self, data: Any) -> Pipeline:
        self.pipeline_data = data
        return self

    def get_data(self) -> Any:
        return self.pipeline_data

    def parse(self) -> Dict[str, Any]:
        """Render the stage."""
        return {f"${self.name}": self.pipeline_data}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.pipeline_data!r})"


class WherePipeline(Pipeline):
    def __init__(self, expression: Dict[str, Any]) -> None:
        super().__init__("match", expression)


class OrWherePipeline(WherePipeline):
    """Match any of the given column expressions."""

    def parse(self) -> Dict[str, Any]:
        return {
            "$match": {
                "$or": [{column: value} for column, value in self.pipeline_data.items()],
            }
        }


class WhereExpressionPipeline(WherePipeline):
    """Match with an aggregation expression ($expr)."""

    def __init__(self, expression: Any) -> None:
        super().__init__({"$expr": expression})


class SelectPipeline(Pipeline):
    def __init__(self, columns: Union[Sequence[str], Mapping[str, Any]]) -> None:
        if isinstance(columns, Mapping):
            projection = {
                column: int(value) if isinstance(value, bool) else value
                for column, value in columns.items()
            }
        else:
            projection = {column: 1 for column in columns}
        super().__init__("project", projection)


class DeselectPipeline(Pipeline):
    def __init__(self, columns: Iterable[str]) -> None:
        super().__init__("project", {column: 0 for column in columns})


class SortPipeline(Pipeline):
    def __init__(self, column: str, direction: str = "asc") -> None:
        super().__init__("sort", {column: -1 if direction == "desc" else 1})


class SortByPipeline(Pipeline):
    def __init__(self, columns: Mapping[str, str]) -> None:
        super().__init__(
            "sort",
            {column: -1 if direction == "desc" else 1 for column, direction in columns.items()},
        )


class SortRandomPipeline(Pipeline):
    def __init__(self, size: int) -> None:
        super().__init__("sample", {"size": size})


class GroupByPipeline(Pipeline):
    """Group stage; a string key is treated as a field reference.

    Example:
        >>> GroupByPipeline("category", {"total": count()}).parse()
        {'$group': {'_id': '$category', 'total': {'$sum': 1}}}
    """

    def __init__(self, _id: Union[str, None, Dict[str, Any]], group_by_data: Dict[str, Any] | None = None) -> None:
        if isinstance(_id, str):
            _id = column_name(_id)
        super().__init__("group", {"_id": _id, **(group_by_data or {})})


class LimitPipeline(Pipeline):
    def __init__(self, limit: int) -> None:
        super().__init__("limit", limit)


class SkipPipeline(Pipeline):
    def __init__(self, skip: int) -> None:
        super().__init__("skip", skip)


class UnwindPipeline(Pipeline):
    def __init__(
        self,
        column: str,
        preserve_null_and_empty_arrays: bool = False,
        include_array_index: str = "",
    ) -> None:
        data: Dict[str, Any] = {
            "path": column_name(column),
            "preserveNullAndEmptyArrays": preserve_null_and_empty_arrays,
        }
        # includeArrayIndex must be a non-empty field name
        if include_array_index:
            data["includeArrayIndex"] = include_array_index
        super().__init__("unwind", data)


class LookupPipeline(Pipeline):
    def __init__(
        self,
        from_: str,
        local_field: str,
        foreign_field: str,
        as_: str,
        pipeline: Sequence[Union[Pipeline, Dict[str, Any]]] | None = None,
    ) -> None:
        super().__init__(
            "lookup",
            {
                "from": from_,
                "localField": local_field,
                "foreignField": foreign_field,
                "as": as_,
                "pipeline": list(pipeline or []),
            },
        )

    def parse(self) -> Dict[str, Any]:
        data = dict(self.pipeline_data)
        data["pipeline"] = parse_pipelines(data["pipeline"])
        return {"$lookup": data}


PipelineLike = Union[Pipeline, Dict[str, Any]]


def parse_pipeline(pipeline: PipelineLike) -> Dict[str, Any]:
    return pipeline.parse() if isinstance(pipeline, Pipeline) else pipeline


def parse_pipelines(pipelines: Iterable[PipelineLike]) -> List[Dict[str, Any]]:
    return [parse_pipeline(pipeline) for pipeline in pipelines]


def select(columns: Union[Sequence[str], Mapping[str, Any]]) -> SelectPipeline:
    return SelectPipeline(columns)


def group_by(column: Union[str, None, Dict[str, Any]], data: Dict[str, Any] | None = None) -> GroupByPipeline:
    return GroupByPipeline(column, data)


def unwind(column: str, preserve_null_and_empty_arrays: bool = False, include_array_index: str = "") -> UnwindPipeline:
    return UnwindPipeline(column, preserve_null_and_empty_arrays, include_array_index)
