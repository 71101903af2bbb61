import pydantic
import pytest

from dashquery.core.analytics.envelope import build_envelope, build_records
from dashquery.core.schemas import QueryResult


def _rows(n):
    return ((i, f"row-{i}") for i in range(n))


def test_stream_shorter_than_cap_is_not_truncated():
    result = build_envelope(["id", "label"], _rows(3), cap=10)

    assert result.row_count == 3
    assert result.truncated is False
    assert result.data[0] == [0, "row-0"]


def test_stream_is_bounded_by_cap():
    result = build_envelope(["id", "label"], _rows(25_000), cap=10_000)

    assert result.row_count == 10_000
    assert len(result.data) == 10_000
    assert result.truncated is True


def test_stream_exactly_at_cap_is_not_truncated():
    result = build_envelope(["id", "label"], _rows(5), cap=5)
    assert result.row_count == 5
    assert result.truncated is False


def test_cap_stops_consuming_the_stream():
    consumed = []

    def rows():
        for i in range(100):
            consumed.append(i)
            yield (i,)

    build_envelope(["id"], rows(), cap=10)
    # cap rows plus one peek
    assert len(consumed) == 11


def test_every_row_matches_the_column_count():
    result = build_envelope(["a", "b"], _rows(50), cap=1000)
    assert all(len(row) == len(result.columns) for row in result.data)


def test_records_are_keyed_and_bounded():
    records = build_records(["id", "label"], _rows(2_000), cap=1_000)

    assert len(records) == 1_000
    assert records[0] == {"id": 0, "label": "row-0"}


def test_envelope_rejects_mismatched_row_count():
    with pytest.raises(pydantic.ValidationError):
        QueryResult(columns=["a"], data=[[1], [2]], row_count=3)


def test_envelope_rejects_ragged_rows():
    with pytest.raises(pydantic.ValidationError):
        QueryResult(columns=["a", "b"], data=[[1, 2], [3]], row_count=2)


def test_empty_envelope():
    result = QueryResult.empty()
    assert result.columns == []
    assert result.row_count == 0
    assert result.is_empty()
