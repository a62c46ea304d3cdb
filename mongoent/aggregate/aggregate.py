"""
Aggregate builder.

Aggregate accumulates pipeline stages through a fluent API and compiles them,
in insertion order, into the stage list MongoDB executes.

Example:
    >>> results = await (
    ...     Aggregate("products")
    ...     .where("price", ">=", 10)
    ...     .sort("price", "desc")
    ...     .limit(5)
    ...     .get()
    ... )

Invariants:
    - Stages are rendered exactly in the order they were appended
    - Fluent methods return the builder; terminal methods are coroutines
    - paginate() runs the pipeline twice: once for the page, once for the total
    - delete() resolves _ids before deleting, it never sends the match filter itself
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..errors import UsageError
from ..store.base import DocumentStore
from ..utils import deep_get
from .expressions import add_to_set, count, day_of_month, month, size, year
from .pipelines import (
    DeselectPipeline,
    GroupByPipeline,
    LimitPipeline,
    LookupPipeline,
    OrWherePipeline,
    Pipeline,
    PipelineLike,
    SelectPipeline,
    SkipPipeline,
    SortByPipeline,
    SortPipeline,
    SortRandomPipeline,
    UnwindPipeline,
    WhereExpressionPipeline,
    WherePipeline,
    parse_pipelines,
)
from .where import WhereExpression

logger = logging.getLogger(__name__)


@dataclass
class PaginationInfo:
    """Pagination metadata.

    Attributes:
        limit: Items per page
        page: Current page (1-based)
        result: Number of documents on this page
        total: Documents matching the un-paged pipeline
        pages: Total number of pages
    """

    limit: int
    page: int
    result: int
    total: int
    pages: int


@dataclass
class PaginationListing:
    """One page of results plus pagination metadata."""

    documents: List[Any] = field(default_factory=list)
    pagination_info: PaginationInfo | None = None


class Aggregate:
    """Fluent aggregation pipeline builder for one collection.

    Attributes:
        collection: Collection name
        pipelines: Accumulated stages (Pipeline instances or raw stage dicts)
    """

    def __init__(self, collection: str, store: DocumentStore | None = None) -> None:
        """Initialize the builder.

        Args:
            collection: Collection to aggregate
            store: Store to execute against (defaults to the connection's store)
        """
        self.collection = collection
        self.pipelines: List[PipelineLike] = []
        self._store = store

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            from ..connection import get_store

            self._store = get_store()
        return self._store

    # =========================
    # Stage management
    # =========================
    def pipeline(self, pipeline: Pipeline) -> Aggregate:
        """Append a stage."""
        self.pipelines.append(pipeline)
        return self

    def add_pipeline(self, pipeline: Dict[str, Any]) -> Aggregate:
        """Append a raw MongoDB stage."""
        self.pipelines.append(pipeline)
        return self

    def add_pipelines(self, pipelines: Sequence[Dict[str, Any]]) -> Aggregate:
        """Append several raw MongoDB stages."""
        self.pipelines.extend(pipelines)
        return self

    def parse(self) -> List[Dict[str, Any]]:
        """Compile the stages into a MongoDB pipeline."""
        return parse_pipelines(self.pipelines)

    def reset(self) -> Aggregate:
        """Drop every stage."""
        self.pipelines = []
        return self

    # =========================
    # Sorting
    # =========================
    def sort(self, column: str, direction: str = "asc") -> Aggregate:
        return self.pipeline(SortPipeline(column, direction))

    def order_by(self, column: str, direction: str = "asc") -> Aggregate:
        return self.sort(column, direction)

    def order_by_desc(self, column: str) -> Aggregate:
        return self.sort(column, "desc")

    def latest(self, column: str = "createdAt") -> Aggregate:
        """Most recently created first."""
        return self.order_by_desc(column)

    def sort_by(self, columns: Mapping[str, str]) -> Aggregate:
        """Sort by several columns, e.g. {"name": "asc", "age": "desc"}."""
        return self.pipeline(SortByPipeline(columns))

    def random(self, limit: Optional[int] = None) -> Aggregate:
        """Sample random documents.

        Without a limit, the value of a previously appended limit stage is reused.

        Raises:
            UsageError: If no limit is given and none was appended
        """
        if not limit:
            limit_pipeline = next(
                (p for p in self.pipelines if isinstance(p, Pipeline) and p.name == "limit"),
                None,
            )
            if limit_pipeline is not None:
                limit = limit_pipeline.get_data()

            if not limit:
                raise UsageError("You must provide a limit when using random() or use limit() pipeline")

        return self.pipeline(SortRandomPipeline(limit))

    # =========================
    # Grouping
    # =========================
    def group_by(
        self,
        group_by_id: Union[GroupByPipeline, str, None, Dict[str, Any]],
        group_by_data: Dict[str, Any] | None = None,
    ) -> Aggregate:
        """Group documents.

        A string key is a field reference, None groups the whole result set and a
        mapping builds a composite key.
        """
        if isinstance(group_by_id, GroupByPipeline):
            return self.pipeline(group_by_id)
        return self.pipeline(GroupByPipeline(group_by_id, group_by_data))

    def group_by_year(self, column: str, group_by_data: Dict[str, Any] | None = None) -> Aggregate:
        return self.group_by({"year": year(column)}, group_by_data)

    def group_by_month_and_year(self, column: str, group_by_data: Dict[str, Any] | None = None) -> Aggregate:
        return self.group_by({"year": year(column), "month": month(column)}, group_by_data)

    def group_by_month(self, column: str, group_by_data: Dict[str, Any] | None = None) -> Aggregate:
        return self.group_by({"month": month(column)}, group_by_data)

    def group_by_date(self, column: str, group_by_data: Dict[str, Any] | None = None) -> Aggregate:
        return self.group_by(
            {"year": year(column), "month": month(column), "day": day_of_month(column)},
            group_by_data,
        )

    def group_by_day_of_month(self, column: str, group_by_data: Dict[str, Any] | None = None) -> Aggregate:
        return self.group_by({"day": day_of_month(column)}, group_by_data)

    # =========================
    # Projection / paging
    # =========================
    def limit(self, limit: int) -> Aggregate:
        return self.pipeline(LimitPipeline(limit))

    def skip(self, skip: int) -> Aggregate:
        return self.pipeline(SkipPipeline(skip))

    def select(self, columns: Union[Sequence[str], Mapping[str, Any]]) -> Aggregate:
        return self.pipeline(SelectPipeline(columns))

    def deselect(self, columns: Sequence[str]) -> Aggregate:
        return self.pipeline(DeselectPipeline(columns))

    def unwind(
        self,
        column: str,
        preserve_null_and_empty_arrays: bool = False,
        include_array_index: str = "",
    ) -> Aggregate:
        return self.pipeline(UnwindPipeline(column, preserve_null_and_empty_arrays, include_array_index))

    def project(self, data: Dict[str, Any]) -> Aggregate:
        return self.add_pipeline({"$project": data})

    def lookup(
        self,
        from_: str,
        local_field: str,
        foreign_field: str,
        as_: str,
        pipeline: Sequence[PipelineLike] | None = None,
        single: bool = False,
    ) -> Aggregate:
        """Join documents of another collection under the `as_` alias.

        With single=True the joined array is collapsed to its first element.
        """
        self.pipeline(LookupPipeline(from_, local_field, foreign_field, as_, pipeline))

        if single:
            self.add_pipeline({"$addFields": {as_: {"$first": "$" + as_}}})

        return self

    # =========================
    # Filters
    # =========================
    def where(self, *args: Any) -> Aggregate:
        """Filter by (column, value), (column, operator, value) or a filter mapping."""
        return self.pipeline(WherePipeline(WhereExpression.parse(*args)))

    def or_where(self, columns: Dict[str, Any]) -> Aggregate:
        """Match documents satisfying any of the column expressions."""
        return self.pipeline(OrWherePipeline(columns))

    def where_expression(self, expression: Any) -> Aggregate:
        return self.pipeline(WhereExpressionPipeline(expression))

    def where_null(self, column: str) -> Aggregate:
        return self.where(column, None)

    def where_not_null(self, column: str) -> Aggregate:
        return self.where(column, "!=", None)

    def where_like(self, column: str, value: Any) -> Aggregate:
        return self.where(column, "like", value)

    def where_not_like(self, column: str, value: Any) -> Aggregate:
        return self.where(column, "notLike", value)

    def where_starts_with(self, column: str, value: Any) -> Aggregate:
        return self.where(column, "startsWith", value)

    def where_ends_with(self, column: str, value: Any) -> Aggregate:
        return self.where(column, "endsWith", value)

    def where_between(self, column: str, value: Sequence[Any]) -> Aggregate:
        return self.where(column, "between", value)

    def where_date_between(self, column: str, value: Sequence[datetime]) -> Aggregate:
        return self.where(column, "between", value)

    def where_not_between(self, column: str, value: Sequence[Any]) -> Aggregate:
        return self.where(column, "notBetween", value)

    def where_exists(self, column: str) -> Aggregate:
        return self.where(column, "exists", True)

    def where_not_exists(self, column: str) -> Aggregate:
        return self.where(column, "exists", False)

    def where_in(self, column: str, values: Sequence[Any]) -> Aggregate:
        return self.where(column, "in", list(values))

    def where_not_in(self, column: str, values: Sequence[Any]) -> Aggregate:
        return self.where(column, "notIn", list(values))

    def where_size(self, column: str, *args: Any) -> Aggregate:
        """Filter by array size: where_size("tags", 3) or where_size("tags", ">", 3)."""
        if len(args) == 1:
            operator, column_size = "=", args[0]
        else:
            operator, column_size = args

        size_column = column + "_size"
        self.add_pipeline({"$addFields": {size_column: size(column)}})
        return self.where(size_column, operator, column_size)

    def where_near(self, column: str, value: Sequence[float], max_distance: float | None = None) -> Aggregate:
        near: Dict[str, Any] = {"$geometry": {"type": "Point", "coordinates": list(value)}}
        if max_distance is not None:
            near["$maxDistance"] = max_distance
        return self.where(column, "near", near)

    # =========================
    # Terminal operations
    # =========================
    async def execute(self) -> List[Dict[str, Any]]:
        """Run the compiled pipeline."""
        return await self.store.aggregate(self.collection, self.parse())

    async def get(self, map_data: Optional[Callable[[Dict[str, Any]], Any]] = None) -> List[Any]:
        """Fetch every record, optionally mapped."""
        records = await self.execute()
        return [map_data(record) for record in records] if map_data else records

    async def first(self, filters: Dict[str, Any] | None = None) -> Any:
        if filters:
            self.where(filters)

        results = await self.limit(1).get()
        return results[0] if results else None

    async def last(self, filters: Dict[str, Any] | None = None) -> Any:
        if filters:
            self.where(filters)

        results = await self.order_by_desc("id").limit(1).get()
        return results[0] if results else None

    async def count(self) -> int:
        """Number of documents the pipeline yields (0 when nothing matches)."""
        self.group_by(None, {"total": count()})

        results = await self.execute()
        return deep_get(results[0], "total", 0) if results else 0

    async def paginate(self, page: int = 1, limit: int = 15) -> PaginationListing:
        """Fetch one page and the total count of the un-paged pipeline."""
        snapshot = list(self.pipelines)

        self.skip((page - 1) * limit).limit(limit)

        records = await self.get()

        self.pipelines = snapshot

        total = await self.count()

        return PaginationListing(
            documents=records,
            pagination_info=PaginationInfo(
                limit=limit,
                page=page,
                result=len(records),
                total=total,
                pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    async def pluck(self, column: str) -> List[Any]:
        """Values of a single column."""
        return await self.select([column]).get(lambda record: deep_get(record, column))

    async def distinct(self, column: str) -> List[Any]:
        """Distinct values of a column."""
        return await self.group_by(column, {column: add_to_set(column)}).get(
            lambda record: record["_id"]
        )

    async def distinct_heavy(self, column: str) -> List[Any]:
        """Distinct values of a column, ignoring null and missing."""
        return await self.where_not_null(column).distinct(column)

    def _split_filters(self) -> tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """Separate $match stages from the rest of the pipeline.

        Several $match stages are combined with $and so that filters on the
        same key all apply.
        """
        matches: List[Dict[str, Any]] = []
        stages: List[Dict[str, Any]] = []
        for stage in self.parse():
            if "$match" in stage:
                if stage["$match"]:
                    matches.append(stage["$match"])
            else:
                stages.append(stage)

        if not matches:
            return {}, stages
        if len(matches) == 1:
            return matches[0], stages
        return {"$and": matches}, stages

    async def update(self, data: Dict[str, Any]) -> int:
        """Set the given fields on every matching document.

        Returns:
            Number of modified documents
        """
        filters, stages = self._split_filters()
        try:
            result = await self.store.update_many(self.collection, filters, [*stages, {"$set": data}])
        except Exception as e:
            logger.error(f"aggregate.update failed on {self.collection}: {e}", exc_info=True)
            raise
        return result.modified_count

    async def unset(self, *columns: str) -> int:
        """Remove the given fields from every matching document.

        Returns:
            Number of modified documents
        """
        filters, stages = self._split_filters()
        try:
            result = await self.store.update_many(
                self.collection, filters, [*stages, {"$unset": list(columns)}]
            )
        except Exception as e:
            logger.error(f"aggregate.unset failed on {self.collection}: {e}", exc_info=True)
            raise
        return result.modified_count

    async def delete(self) -> int:
        """Delete every matching document.

        The matching _ids are resolved first and the delete targets exactly that
        set, so filters that cannot be sent to a delete command still work.

        Returns:
            Number of deleted documents
        """
        ids = await self.pluck("_id")
        if not ids:
            return 0

        result = await self.store.delete_many(self.collection, {"_id": {"$in": ids}})
        return result.deleted_count
