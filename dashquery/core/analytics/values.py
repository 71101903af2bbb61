import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from dashquery.core.schemas import Value


# -----------------------------------------------------------------------------
# VALUE MAPPER
# Purpose: turn one engine-native cell into a JSON-compatible value.
# Binary payloads and unknown kinds collapse to placeholder strings.
# -----------------------------------------------------------------------------

BLOB_PLACEHOLDER = "BLOB"
UNKNOWN_PLACEHOLDER = "UNKNOWN"


def _map_float(value: float) -> Value:
    # Non-finite results (division edge cases) become 0
    if not math.isfinite(value):
        return 0
    return value


def _map_text(value: str) -> str:
    # Lone surrogates cannot be encoded; replace instead of failing the row
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return value.encode("utf-8", "replace").decode("utf-8")
    return value


def to_value(cell: Any) -> Value:
    """
    Convert a single DuckDB cell into a generic value.

    Null -> None, integer kinds -> int, floating kinds -> float, text -> str,
    binary -> "BLOB", anything unrecognised -> "UNKNOWN". Temporal values are
    rendered as ISO-8601 text.

    Example:
        to_value(3.14) -> 3.14
        to_value(b"\\x00") -> "BLOB"
    """
    if cell is None:
        return None
    # bool is an int subclass, check it first
    if isinstance(cell, bool):
        return int(cell)
    if isinstance(cell, int):
        return cell
    if isinstance(cell, float):
        return _map_float(cell)
    if isinstance(cell, Decimal):
        return _map_float(float(cell))
    if isinstance(cell, str):
        return _map_text(cell)
    if isinstance(cell, (bytes, bytearray, memoryview)):
        return BLOB_PLACEHOLDER
    if isinstance(cell, (datetime, date, time)):
        return cell.isoformat()
    return UNKNOWN_PLACEHOLDER


def map_row(row: Sequence[Any]) -> List[Value]:
    """Map every cell of a positional row."""
    return [to_value(cell) for cell in row]


def map_record(columns: Sequence[str], row: Sequence[Any]) -> Dict[str, Value]:
    """Map a row into a column-name-keyed object (streaming path shape)."""
    return {name: to_value(cell) for name, cell in zip(columns, row)}
