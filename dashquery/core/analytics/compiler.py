import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dashquery.core.errors import ValidationError
from dashquery.core.schemas import (
    AggregationOperation,
    AggregationRequest,
    DataPreviewRequest,
    MovingAverageRequest,
    OutlierMethod,
    OutlierRequest,
    TimeInterval,
    TimeSeriesRequest,
)


# -----------------------------------------------------------------------------
# QUERY COMPILER
# Purpose: turn structured dashboard requests into one SQL statement each.
# Identifiers are checked and interpolated; values travel as bound parameters.
# -----------------------------------------------------------------------------

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TABLE_PREFIX = "data_source_"

DEFAULT_ZSCORE_THRESHOLD = 3.0

AGGREGATE_TEMPLATES: Dict[str, str] = {
    "sum": "SUM({})",
    "avg": "AVG({})",
    "count": "COUNT({})",
    "min": "MIN({})",
    "max": "MAX({})",
    "distinct_count": "COUNT(DISTINCT {})",
}

# Time-series rollups accept every aggregate except distinct_count
TIME_SERIES_AGGREGATES = ("sum", "avg", "count", "min", "max")


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text plus the positional parameters bound to its ``?`` markers."""

    sql: str
    params: Tuple[Any, ...] = field(default_factory=tuple)


def check_identifier(name: str, kind: str = "identifier") -> str:
    """Return ``name`` unchanged if it is a plain SQL identifier."""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValidationError(f"Invalid {kind}: {name!r}")
    return name


def table_name_for(data_source_id: str) -> str:
    """
    Resolve the backing table of a data source.

    Example:
        table_name_for("1b4e-28ba") -> "data_source_1b4e_28ba"
    """
    table = f"{TABLE_PREFIX}{data_source_id.replace('-', '_')}"
    return check_identifier(table, "data source id")


def build_filter_clause(
    filters: Optional[Dict[str, Any]],
) -> Tuple[str, List[Any]]:
    """
    Build a WHERE clause from a ``{field: value}`` mapping.

    Text values become a substring ``LIKE`` match, numbers an equality test.
    Conditions are joined with AND. Returns ("", []) when nothing to filter.
    """
    if not filters:
        return "", []

    conditions: List[str] = []
    params: List[Any] = []
    for name, value in filters.items():
        column = check_identifier(name, "filter field")
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError(
                f"Unsupported filter value for {column}: {value!r}"
            )
        if isinstance(value, str):
            conditions.append(f"{column} LIKE ?")
            params.append(f"%{value}%")
        else:
            conditions.append(f"{column} = ?")
            params.append(value)

    return " WHERE " + " AND ".join(conditions), params


def aggregate_expression(operation: AggregationOperation) -> str:
    template = AGGREGATE_TEMPLATES.get(operation.operation)
    if template is None:
        raise ValidationError(
            f"Unsupported aggregation operation: {operation.operation}"
        )
    return template.format(check_identifier(operation.field, "field"))


def compile_aggregation(table: str, request: AggregationRequest) -> CompiledQuery:
    """
    Compile an aggregation request.

    Example:
        operations=[{"field": "value", "operation": "avg"}], group_by=["region"]
        -> SELECT region, AVG(value) AS avg_value FROM t GROUP BY region
    """
    if not request.operations:
        raise ValidationError("At least one aggregation operation is required")

    group_by = [check_identifier(g, "group_by field") for g in request.group_by or []]

    select_parts = list(group_by)
    for operation in request.operations:
        alias = check_identifier(operation.get_alias(), "alias")
        select_parts.append(f"{aggregate_expression(operation)} AS {alias}")

    sql = f"SELECT {', '.join(select_parts)} FROM {table}"

    where, params = build_filter_clause(request.filters)
    sql += where

    if group_by:
        sql += f" GROUP BY {', '.join(group_by)}"

    if request.limit is not None:
        sql += f" LIMIT {int(request.limit)}"

    return CompiledQuery(sql, tuple(params))


def compile_statistics(table: str, column: str) -> CompiledQuery:
    """Descriptive statistics over the non-null values of one column."""
    col = check_identifier(column, "column")
    sql = (
        f"SELECT COUNT({col}) AS count, "
        f"AVG({col}) AS mean, "
        f"MIN({col}) AS min, "
        f"MAX({col}) AS max, "
        f"STDDEV({col}) AS std_dev, "
        f"quantile_cont({col}, 0.5) AS median, "
        f"quantile_cont({col}, 0.25) AS q1, "
        f"quantile_cont({col}, 0.75) AS q3 "
        f"FROM {table} WHERE {col} IS NOT NULL"
    )
    return CompiledQuery(sql)


def compile_time_series(table: str, request: TimeSeriesRequest) -> CompiledQuery:
    intervals = {i.value for i in TimeInterval}
    if request.interval not in intervals:
        raise ValidationError(f"Invalid interval: {request.interval}")
    if request.aggregation not in TIME_SERIES_AGGREGATES:
        raise ValidationError(f"Invalid aggregation: {request.aggregation}")

    time_col = check_identifier(request.time_column, "time column")
    value_col = check_identifier(request.value_column, "value column")

    period = f"date_trunc('{request.interval}', {time_col})"
    agg = AGGREGATE_TEMPLATES[request.aggregation].format(value_col)
    sql = (
        f"SELECT {period} AS time_period, {agg} AS value "
        f"FROM {table} "
        f"WHERE {time_col} IS NOT NULL AND {value_col} IS NOT NULL "
        f"GROUP BY {period} "
        f"ORDER BY time_period"
    )
    return CompiledQuery(sql)


def compile_outliers(table: str, request: OutlierRequest) -> CompiledQuery:
    """
    Select the rows whose value lies outside the outlier boundary.

    iqr: rows below Q1 - 1.5*IQR or above Q3 + 1.5*IQR, with the fences
    attached as ``lower_bound``/``upper_bound``.
    zscore: rows with |value - mean| / stddev above the threshold
    (3.0 by default), with the score attached as ``z_score``.
    """
    col = check_identifier(request.column, "column")

    if request.method == OutlierMethod.IQR.value:
        sql = (
            f"WITH stats AS ("
            f"SELECT quantile_cont({col}, 0.25) AS q1, "
            f"quantile_cont({col}, 0.75) AS q3 "
            f"FROM {table} WHERE {col} IS NOT NULL"
            f"), outlier_bounds AS ("
            f"SELECT q1 - 1.5 * (q3 - q1) AS lower_bound, "
            f"q3 + 1.5 * (q3 - q1) AS upper_bound "
            f"FROM stats"
            f") "
            f"SELECT * FROM {table} CROSS JOIN outlier_bounds "
            f"WHERE {col} < lower_bound OR {col} > upper_bound"
        )
        return CompiledQuery(sql)

    if request.method == OutlierMethod.ZSCORE.value:
        threshold = (
            DEFAULT_ZSCORE_THRESHOLD if request.threshold is None else request.threshold
        )
        score = f"ABS(({col} - stats.mean) / stats.std_dev)"
        sql = (
            f"WITH stats AS ("
            f"SELECT AVG({col}) AS mean, STDDEV({col}) AS std_dev "
            f"FROM {table} WHERE {col} IS NOT NULL"
            f") "
            f"SELECT *, {score} AS z_score "
            f"FROM {table} CROSS JOIN stats "
            f"WHERE {score} > ?"
        )
        return CompiledQuery(sql, (float(threshold),))

    raise ValidationError(f"Invalid outlier detection method: {request.method}")


def compile_correlation_pairs(
    table: str, columns: Sequence[str]
) -> List[Tuple[str, str, CompiledQuery]]:
    """One CORR query per ordered column pair, self-pairs included."""
    checked = [check_identifier(c, "column") for c in columns]
    pairs = []
    for first in checked:
        for second in checked:
            sql = (
                f"SELECT CORR({first}, {second}) AS correlation "
                f"FROM {table} "
                f"WHERE {first} IS NOT NULL AND {second} IS NOT NULL"
            )
            pairs.append((first, second, CompiledQuery(sql)))
    return pairs


def compile_moving_average(
    table: str, request: MovingAverageRequest
) -> CompiledQuery:
    value_col = check_identifier(request.value_column, "value column")
    order_col = check_identifier(request.order_column, "order column")
    preceding = int(request.window_size) - 1
    sql = (
        f"SELECT *, AVG({value_col}) OVER ("
        f"ORDER BY {order_col} "
        f"ROWS BETWEEN {preceding} PRECEDING AND CURRENT ROW"
        f") AS moving_avg "
        f"FROM {table} "
        f"ORDER BY {order_col}"
    )
    return CompiledQuery(sql)


def compile_preview(
    table: str, request: DataPreviewRequest, limit: int
) -> CompiledQuery:
    where, params = build_filter_clause(request.filters)
    offset = int(request.offset or 0)
    sql = f"SELECT * FROM {table}{where} LIMIT {int(limit)} OFFSET {offset}"
    return CompiledQuery(sql, tuple(params))


def compile_row_count(table: str) -> CompiledQuery:
    return CompiledQuery(f"SELECT COUNT(*) AS row_count FROM {table}")


def compile_describe(table: str) -> CompiledQuery:
    """Declared columns of a table, in table order."""
    return CompiledQuery(
        "SELECT column_name, data_type, is_nullable "
        "FROM information_schema.columns "
        "WHERE table_schema = 'main' AND table_name = ? "
        "ORDER BY ordinal_position",
        (table,),
    )


def compile_null_profile(table: str, column: str) -> CompiledQuery:
    """Total, non-null, null and distinct counts for one column."""
    col = check_identifier(column, "column")
    sql = (
        f"SELECT COUNT(*) AS total_rows, "
        f"COUNT({col}) AS non_null_rows, "
        f"(COUNT(*) - COUNT({col})) AS null_rows, "
        f"CASE WHEN COUNT(*) = 0 THEN 0.0 "
        f"ELSE ROUND((COUNT(*) - COUNT({col})) * 100.0 / COUNT(*), 2) END "
        f"AS null_percentage, "
        f"COUNT(DISTINCT {col}) AS unique_count "
        f"FROM {table}"
    )
    return CompiledQuery(sql)


def compile_list_tables() -> CompiledQuery:
    return CompiledQuery(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = 'main' AND starts_with(table_name, ?) "
        "ORDER BY table_name",
        (TABLE_PREFIX,),
    )
