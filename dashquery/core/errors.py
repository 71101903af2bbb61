import duckdb


# =========================
# Error taxonomy
# =========================
class AnalyticsError(Exception):
    """Base class for errors raised before a statement reaches the engine."""

    code: str = "analytics_error"


class ValidationError(AnalyticsError):
    """Unknown operation/interval/method, malformed filter or bad identifier."""

    code = "validation_error"


class ForbiddenStatement(AnalyticsError):
    """SQL text rejected by the safety validator."""

    code = "forbidden_statement"


class EncodingError(AnalyticsError):
    """SQL payload was not valid UTF-8."""

    code = "encoding_error"


# Engine failures are DuckDB's own exceptions, surfaced unchanged
EngineError = duckdb.Error
