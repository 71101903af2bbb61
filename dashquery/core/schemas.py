from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Union
from uuid import uuid4
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# A materialized cell: Null, Integer, Float or Text (placeholders included)
Value = Union[None, int, float, str]


# =========================
# Enums
# =========================
class SafetyMode(str, Enum):
    GENERAL = "general"
    READ_ONLY = "read_only"


class AggregationKind(str, Enum):
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"
    DISTINCT_COUNT = "distinct_count"


class TimeInterval(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class OutlierMethod(str, Enum):
    IQR = "iqr"
    ZSCORE = "zscore"


# =========================
# QUERY REQUESTS
# =========================
class QueryRequest(BaseModel):
    sql: str
    data_source_id: Optional[str] = None
    cache: Optional[bool] = None


class AggregationOperation(BaseModel):
    field: str
    operation: str  # 'sum' | 'avg' | 'count' | 'min' | 'max' | 'distinct_count'
    alias: Optional[str] = None

    def with_alias(self, alias: str) -> "AggregationOperation":
        return self.model_copy(update={"alias": alias})

    def get_alias(self) -> str:
        if self.alias is not None:
            return self.alias
        return f"{self.operation}_{self.field}"


class AggregationRequest(BaseModel):
    data_source_id: str
    operations: List[AggregationOperation]
    group_by: Optional[List[str]] = None
    filters: Optional[Dict[str, Any]] = None
    limit: Optional[int] = Field(default=None, ge=0)
    cache: Optional[bool] = None


class StatisticsRequest(BaseModel):
    data_source_id: str
    column: str


class TimeSeriesRequest(BaseModel):
    data_source_id: str
    time_column: str
    value_column: str
    interval: str = TimeInterval.DAY.value
    aggregation: str = AggregationKind.SUM.value


class OutlierRequest(BaseModel):
    data_source_id: str
    column: str
    method: str = OutlierMethod.IQR.value
    threshold: Optional[float] = None


class CorrelationRequest(BaseModel):
    data_source_id: str
    columns: List[str] = Field(min_length=1)


class MovingAverageRequest(BaseModel):
    data_source_id: str
    value_column: str
    order_column: str
    window_size: int = Field(ge=1)


class DataPreviewRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    filters: Optional[Dict[str, Any]] = None


# =========================
# RESULTS
# =========================
class QueryResult(BaseModel):
    """Envelope returned for every executed statement."""

    columns: List[str]
    data: List[List[Value]]
    row_count: int
    truncated: bool = False

    @model_validator(mode="after")
    def check_shape(self) -> "QueryResult":
        if self.row_count != len(self.data):
            raise ValueError(
                f"row_count {self.row_count} does not match {len(self.data)} rows"
            )
        width = len(self.columns)
        for index, row in enumerate(self.data):
            if len(row) != width:
                raise ValueError(
                    f"row {index} has {len(row)} cells, expected {width}"
                )
        return self

    @classmethod
    def empty(cls) -> "QueryResult":
        return cls(columns=[], data=[], row_count=0)

    def is_empty(self) -> bool:
        return not self.data

    def records(self) -> List[Dict[str, Value]]:
        """Rows keyed by column name. Duplicate names keep the last value."""
        return [dict(zip(self.columns, row)) for row in self.data]


class AggregationSummary(BaseModel):
    field: str
    operation: str
    result: Value = None


class AggregationResult(QueryResult):
    aggregations: List[AggregationSummary] = []


class ColumnDescriptor(BaseModel):
    name: str
    declared_type: str
    nullable: bool = True


class TableInfo(BaseModel):
    name: str
    columns: List[ColumnDescriptor]
    row_count: int


class DataPreviewResponse(BaseModel):
    columns: List[str]
    data: List[List[Value]]
    total_rows: int
    preview_rows: int


class DataQualityMetric(BaseModel):
    column_name: str
    data_type: str
    total_rows: int
    null_count: int
    null_percentage: float
    unique_count: Optional[int] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class MetricValue(BaseModel):
    name: str
    value: Value = None
    description: Optional[str] = None
    unit: Optional[str] = None


class MetricsResult(BaseModel):
    data_source_id: str
    metrics: List[MetricValue]
    calculated_at: datetime


class StreamQueryResult(BaseModel):
    """Keyed-record result shape used by the streaming query path."""

    query_id: str = Field(default_factory=lambda: str(uuid4()))
    data: List[Dict[str, Value]] = []
    error: Optional[str] = None


# =========================
# CACHE
# =========================
class CacheEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    query_hash: str
    query_sql: str
    result_data: QueryResult
    data_source_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True)

    @classmethod
    def create(
        cls,
        query_hash: str,
        query_sql: str,
        result_data: QueryResult,
        data_source_id: Optional[str] = None,
        ttl_seconds: int = 300,
        now: Optional[datetime] = None,
    ) -> "CacheEntry":
        created_at = now or datetime.now(timezone.utc)
        return cls(
            query_hash=query_hash,
            query_sql=query_sql,
            result_data=result_data.model_copy(deep=True),
            data_source_id=data_source_id,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current >= self.expires_at

    def snapshot(self) -> QueryResult:
        """A copy of the stored result the caller is free to modify."""
        return self.result_data.model_copy(deep=True)
