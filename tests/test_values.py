import math
import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest

from dashquery.core.analytics.compiler import CompiledQuery
from dashquery.core.analytics.values import (
    BLOB_PLACEHOLDER,
    UNKNOWN_PLACEHOLDER,
    map_record,
    map_row,
    to_value,
)


def test_mixed_row_maps_to_generic_values():
    """NULL, integer, float, text and binary cells map to their generic kinds"""
    row = (None, 42, 3.14, "hi", b"\x00\x01")
    assert map_row(row) == [None, 42, 3.14, "hi", BLOB_PLACEHOLDER]


def test_integer_and_float_kinds_are_preserved():
    assert isinstance(to_value(42), int)
    assert isinstance(to_value(2.5), float)
    assert to_value(Decimal("12.50")) == 12.5


@pytest.mark.parametrize("cell", [math.nan, math.inf, -math.inf])
def test_non_finite_floats_become_zero(cell):
    assert to_value(cell) == 0


def test_bool_maps_to_integer():
    assert to_value(True) == 1
    assert to_value(False) == 0


def test_binary_kinds_use_placeholder():
    assert to_value(bytearray(b"abc")) == BLOB_PLACEHOLDER
    assert to_value(memoryview(b"abc")) == BLOB_PLACEHOLDER


def test_temporal_values_render_as_iso_text():
    assert to_value(date(2024, 1, 2)) == "2024-01-02"
    assert to_value(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"


def test_unknown_kinds_use_placeholder():
    assert to_value(uuid.uuid4()) == UNKNOWN_PLACEHOLDER
    assert to_value([1, 2]) == UNKNOWN_PLACEHOLDER
    assert to_value({"a": 1}) == UNKNOWN_PLACEHOLDER


def test_unencodable_text_is_replaced():
    mapped = to_value("ok\udcff")
    assert mapped.startswith("ok")
    mapped.encode("utf-8")


def test_record_mapping_matches_row_mapping():
    columns = ["a", "b", "c"]
    row = (None, float("nan"), b"x")
    assert map_record(columns, row) == dict(zip(columns, map_row(row)))


@pytest.mark.asyncio
async def test_engine_cells_map_through_executor(executor):
    """Cells coming from DuckDB itself map the same way"""
    query = CompiledQuery(
        "SELECT NULL AS n, 42 AS i, 3.14::DOUBLE AS f, 'hi' AS t, 'abc'::BLOB AS b"
    )
    result = await executor.execute(query, cap=10)

    assert result.columns == ["n", "i", "f", "t", "b"]
    assert result.data == [[None, 42, 3.14, "hi", BLOB_PLACEHOLDER]]
