"""Aggregation pipeline builder, stages and expression helpers."""

from .aggregate import Aggregate, PaginationInfo, PaginationListing
from .expressions import (
    add_to_set,
    avg,
    column_name,
    count,
    day_of_month,
    first,
    last,
    max_,
    min_,
    month,
    push,
    size,
    sum_,
    year,
)
from .pipelines import (
    DeselectPipeline,
    GroupByPipeline,
    LimitPipeline,
    LookupPipeline,
    OrWherePipeline,
    Pipeline,
    SelectPipeline,
    SkipPipeline,
    SortByPipeline,
    SortPipeline,
    SortRandomPipeline,
    UnwindPipeline,
    WhereExpressionPipeline,
    WherePipeline,
    group_by,
    parse_pipeline,
    parse_pipelines,
    select,
    unwind,
)
from .where import WhereExpression, to_operator

__all__ = [
    "Aggregate",
    "DeselectPipeline",
    "GroupByPipeline",
    "LimitPipeline",
    "LookupPipeline",
    "OrWherePipeline",
    "PaginationInfo",
    "PaginationListing",
    "Pipeline",
    "SelectPipeline",
    "SkipPipeline",
    "SortByPipeline",
    "SortPipeline",
    "SortRandomPipeline",
    "UnwindPipeline",
    "WhereExpression",
    "WhereExpressionPipeline",
    "WherePipeline",
    "add_to_set",
    "avg",
    "column_name",
    "count",
    "day_of_month",
    "first",
    "group_by",
    "last",
    "max_",
    "min_",
    "month",
    "parse_pipeline",
    "parse_pipelines",
    "push",
    "select",
    "size",
    "sum_",
    "to_operator",
    "unwind",
    "year",
]
