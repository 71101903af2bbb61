import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import duckdb

from dashquery.core.analytics import compiler
from dashquery.core.analytics.cache import QueryCache, cache_key
from dashquery.core.analytics.compiler import CompiledQuery, table_name_for
from dashquery.core.analytics.executor import QueryExecutor
from dashquery.core.analytics.safety import ensure_text, validate_sql
from dashquery.core.config import Settings, settings as default_settings
from dashquery.core.database import Database
from dashquery.core.errors import AnalyticsError
from dashquery.core.schemas import (
    AggregationRequest,
    AggregationResult,
    AggregationSummary,
    ColumnDescriptor,
    CorrelationRequest,
    DataPreviewRequest,
    DataPreviewResponse,
    DataQualityMetric,
    MetricValue,
    MetricsResult,
    MovingAverageRequest,
    OutlierRequest,
    QueryRequest,
    QueryResult,
    SafetyMode,
    StatisticsRequest,
    StreamQueryResult,
    TableInfo,
    TimeSeriesRequest,
)


# -----------------------------------------------------------------------------
# ANALYTICS SERVICE
# Purpose: the entry points a transport layer calls. Each one compiles a
# request, runs it through the executor and shapes the result for dashboards.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class AnalyticsService:
    """Query front-end over one DuckDB database."""

    def __init__(
        self,
        db: Database,
        config: Optional[Settings] = None,
        cache: Optional[QueryCache] = None,
    ):
        self.config = config or default_settings
        self.db = db
        self.executor = QueryExecutor(db, strict=self.config.SQL_STRICT_GUARD)

        if cache is None and self.config.QUERY_CACHE_ENABLED:
            cache = QueryCache(ttl_seconds=self.config.CACHE_TTL)
        self.cache = cache

    async def _execute(
        self,
        query: CompiledQuery,
        cap: Optional[int] = None,
        data_source_id: Optional[str] = None,
        use_cache: Optional[bool] = None,
        validate: bool = True,
    ) -> QueryResult:
        """Execute with the browsing cap, going through the cache when it is on."""
        cap = self.config.PREVIEW_MAX_ROWS if cap is None else cap

        if self.cache is None or use_cache is False:
            return await self.executor.execute(query, cap, validate=validate)

        # Forbidden text must never be answered from a snapshot
        validate_sql(query.sql, SafetyMode.GENERAL, strict=self.config.SQL_STRICT_GUARD)

        key = cache_key(query.sql, data_source_id, query.params)
        entry = self.cache.lookup(key)
        if entry is not None:
            logger.info(f"Serving query from cache entry {entry.id}")
            return entry.snapshot()

        result = await self.executor.execute(query, cap)
        self.cache.store(key, query.sql, result, data_source_id=data_source_id)
        return result

    # -------------------------------------------------------------------------
    # Freeform and aggregation queries
    # -------------------------------------------------------------------------
    async def execute_query(self, request: QueryRequest) -> QueryResult:
        """
        Execute a custom SQL query.

        The text is checked by the general-mode validator and the result is
        capped at ``PREVIEW_MAX_ROWS`` rows.

        Args:
            request: SQL text, optional data source id and cache flag

        Returns:
            QueryResult envelope
        """
        logger.info("Executing custom query")
        query = CompiledQuery(request.sql)
        return await self._execute(
            query, data_source_id=request.data_source_id, use_cache=request.cache
        )

    async def run_aggregation(self, request: AggregationRequest) -> AggregationResult:
        """
        Run aggregation operations over a data source.

        Args:
            request: operations, optional group_by, filters and limit

        Returns:
            Envelope plus one summary per operation. Without group_by the
            summary carries the aggregated value; grouped results leave it
            empty because each group has its own value in ``data``.

        Example:
            {"operations": [{"field": "value", "operation": "avg"}],
             "group_by": ["region"]}
            -> SELECT region, AVG(value) AS avg_value FROM t GROUP BY region
        """
        logger.info(f"Running aggregation for source: {request.data_source_id}")

        table = table_name_for(request.data_source_id)
        query = compiler.compile_aggregation(table, request)
        logger.debug(f"Aggregation query: {query.sql}")

        result = await self._execute(
            query, data_source_id=request.data_source_id, use_cache=request.cache
        )

        # Duplicate aliases collapse here, the last column wins
        first_record: Dict[str, Any] = {}
        if not request.group_by and result.data:
            first_record = result.records()[0]

        summaries = [
            AggregationSummary(
                field=op.field,
                operation=op.operation,
                result=first_record.get(op.get_alias()),
            )
            for op in request.operations
        ]

        return AggregationResult(
            columns=result.columns,
            data=result.data,
            row_count=result.row_count,
            truncated=result.truncated,
            aggregations=summaries,
        )

    async def preview_data(
        self, data_source_id: str, request: Optional[DataPreviewRequest] = None
    ) -> DataPreviewResponse:
        """
        Return one page of raw rows from a data source.

        The page size defaults to ``PREVIEW_DEFAULT_ROWS`` and is clamped to
        ``PREVIEW_MAX_ROWS``. ``total_rows`` counts the whole table.
        """
        request = request or DataPreviewRequest()
        logger.debug(f"Previewing data for source: {data_source_id}")

        table = table_name_for(data_source_id)
        limit = self.config.PREVIEW_DEFAULT_ROWS if request.limit is None else request.limit
        limit = min(limit, self.config.PREVIEW_MAX_ROWS)

        page = await self._execute(
            compiler.compile_preview(table, request, limit), use_cache=False
        )
        total_rows = await self._row_count(table)

        return DataPreviewResponse(
            columns=page.columns,
            data=page.data,
            total_rows=total_rows,
            preview_rows=page.row_count,
        )

    # -------------------------------------------------------------------------
    # Statistical analysis
    # -------------------------------------------------------------------------
    async def calculate_statistics(self, request: StatisticsRequest) -> Dict[str, float]:
        """
        Calculate descriptive statistics for one column.

        Returns:
            Mapping of statistic name to value. Statistics the engine returns
            as NULL (e.g. std_dev of a single value) are left out.

        Example:
            {"count": 5.0, "mean": 30.0, "min": 10.0, "max": 50.0,
             "std_dev": 15.81, "median": 30.0, "q1": 20.0, "q3": 40.0}
        """
        logger.info(
            f"Calculating statistics for {request.data_source_id}.{request.column}"
        )
        table = table_name_for(request.data_source_id)
        result = await self._execute(
            compiler.compile_statistics(table, request.column), cap=1, use_cache=False
        )

        if result.is_empty():
            return {}

        stats: Dict[str, float] = {}
        for name, value in zip(result.columns, result.data[0]):
            number = _as_float(value)
            if number is not None:
                stats[name] = number
        return stats

    async def time_series_aggregation(self, request: TimeSeriesRequest) -> QueryResult:
        """Roll a value column up per hour/day/week/month, oldest period first."""
        logger.info(
            f"Generating time series aggregation for {request.data_source_id}."
            f"{request.value_column} by {request.interval}"
        )
        table = table_name_for(request.data_source_id)
        return await self._execute(
            compiler.compile_time_series(table, request), use_cache=False
        )

    async def detect_outliers(self, request: OutlierRequest) -> QueryResult:
        """
        Detect outliers using the IQR fences or a z-score threshold.

        Returns:
            The outlying rows with every original column, plus
            lower_bound/upper_bound (iqr) or mean/std_dev/z_score (zscore).
        """
        logger.info(
            f"Detecting outliers in {request.data_source_id}.{request.column} "
            f"using {request.method} method"
        )
        table = table_name_for(request.data_source_id)
        return await self._execute(
            compiler.compile_outliers(table, request), use_cache=False
        )

    async def correlation_matrix(
        self, request: CorrelationRequest
    ) -> Dict[str, Dict[str, float]]:
        """
        Pairwise Pearson correlation between numeric columns.

        Runs one query per ordered pair. A pair with no usable rows (or an
        undefined coefficient) is reported as 0.0.

        Example:
            {"a": {"a": 1.0, "b": 0.98}, "b": {"a": 0.98, "b": 1.0}}
        """
        logger.info(
            f"Calculating correlation matrix for {len(request.columns)} columns "
            f"in {request.data_source_id}"
        )
        table = table_name_for(request.data_source_id)

        correlations: Dict[str, Dict[str, float]] = {}
        for first, second, query in compiler.compile_correlation_pairs(
            table, request.columns
        ):
            result = await self._execute(query, cap=1, use_cache=False)
            coefficient = 0.0
            if result.data:
                coefficient = _as_float(result.data[0][0]) or 0.0
            correlations.setdefault(first, {})[second] = coefficient

        return correlations

    async def moving_average(self, request: MovingAverageRequest) -> QueryResult:
        """All rows ordered by ``order_column`` with a trailing ``moving_avg`` column."""
        logger.info(
            f"Calculating {request.window_size}-period moving average for "
            f"{request.data_source_id}.{request.value_column}"
        )
        table = table_name_for(request.data_source_id)
        return await self._execute(
            compiler.compile_moving_average(table, request), use_cache=False
        )

    # -------------------------------------------------------------------------
    # Table introspection
    # -------------------------------------------------------------------------
    async def _row_count(self, table: str) -> int:
        result = await self._execute(
            compiler.compile_row_count(table), cap=1, use_cache=False
        )
        if result.data and isinstance(result.data[0][0], int):
            return result.data[0][0]
        return 0

    async def describe_columns(self, data_source_id: str) -> List[ColumnDescriptor]:
        table = table_name_for(data_source_id)
        result = await self._execute(
            compiler.compile_describe(table), use_cache=False, validate=False
        )
        return [
            ColumnDescriptor(
                name=record["column_name"],
                declared_type=record["data_type"],
                nullable=record.get("is_nullable") != "NO",
            )
            for record in result.records()
        ]

    async def get_table_info(self, data_source_id: str) -> TableInfo:
        """Column descriptors and row count of a data source table."""
        table = table_name_for(data_source_id)
        logger.debug(f"Getting table info for: {table}")
        columns = await self.describe_columns(data_source_id)
        return TableInfo(name=table, columns=columns, row_count=await self._row_count(table))

    async def data_quality_report(self, data_source_id: str) -> List[DataQualityMetric]:
        """
        Null and distinct-value profile for every column of a data source.

        Example:
            [{"column_name": "value", "data_type": "DOUBLE", "total_rows": 5,
              "null_count": 1, "null_percentage": 20.0, "unique_count": 4}]
        """
        logger.info(f"Generating data quality report for {data_source_id}")
        table = table_name_for(data_source_id)

        metrics = []
        for column in await self.describe_columns(data_source_id):
            result = await self._execute(
                compiler.compile_null_profile(table, column.name),
                cap=1,
                use_cache=False,
                validate=False,
            )
            record = result.records()[0] if result.data else {}
            metrics.append(
                DataQualityMetric(
                    column_name=column.name,
                    data_type=column.declared_type,
                    total_rows=record.get("total_rows") or 0,
                    null_count=record.get("null_rows") or 0,
                    null_percentage=_as_float(record.get("null_percentage")) or 0.0,
                    unique_count=record.get("unique_count"),
                )
            )
        return metrics

    async def get_metrics(self, data_source_id: str) -> MetricsResult:
        """Predefined metrics for a data source: row count and table name."""
        logger.info(f"Getting metrics for data source: {data_source_id}")
        table = table_name_for(data_source_id)
        row_count = await self._row_count(table)

        return MetricsResult(
            data_source_id=data_source_id,
            metrics=[
                MetricValue(
                    name="row_count",
                    value=row_count,
                    description="Total number of rows",
                    unit="rows",
                ),
                MetricValue(name="table_name", value=table, description="Table name"),
            ],
            calculated_at=datetime.now(timezone.utc),
        )

    async def list_tables(self) -> List[str]:
        """Names of the data source tables in the database."""
        result = await self._execute(
            compiler.compile_list_tables(), use_cache=False, validate=False
        )
        return [row[0] for row in result.data]

    # -------------------------------------------------------------------------
    # Streaming path
    # -------------------------------------------------------------------------
    async def stream_query(self, sql: Union[str, bytes]) -> StreamQueryResult:
        """
        Run a read-only query for a live client.

        Uses the read-only validator and the ``STREAM_MAX_ROWS`` cap, and
        returns records keyed by column name. Failures are reported in the
        ``error`` field so the client channel stays open.
        """
        try:
            text = ensure_text(sql)
            logger.info(f"Client executing query: {text}")
            records = await self.executor.fetch_records(
                CompiledQuery(text), cap=self.config.STREAM_MAX_ROWS
            )
        except (AnalyticsError, duckdb.Error) as error:
            logger.warning(f"Streaming query failed: {error}")
            return StreamQueryResult(data=[], error=str(error))

        return StreamQueryResult(data=records)
