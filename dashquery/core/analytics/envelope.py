import logging
from itertools import islice
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from dashquery.core.analytics.values import map_record, map_row
from dashquery.core.schemas import QueryResult, Value

logger = logging.getLogger(__name__)

_SENTINEL = object()


def _take(rows: Iterable[Sequence[Any]], cap: int) -> Tuple[List[Sequence[Any]], bool]:
    """Pull at most ``cap`` rows and report whether more were available."""
    if cap < 0:
        raise ValueError(f"Row cap must be non-negative, got {cap}")
    iterator = iter(rows)
    taken = list(islice(iterator, cap))
    truncated = next(iterator, _SENTINEL) is not _SENTINEL
    if truncated:
        logger.warning(f"Query result truncated to {cap} rows")
    return taken, truncated


def build_envelope(
    columns: Sequence[str], rows: Iterable[Sequence[Any]], cap: int
) -> QueryResult:
    """
    Materialize a row stream into a bounded envelope.

    Consumes rows until the stream is exhausted or ``cap`` rows were taken.
    Hitting the cap is not an error: the envelope comes back with
    ``truncated=True`` and ``row_count`` equal to the rows it holds.
    """
    taken, truncated = _take(rows, cap)
    data = [map_row(row) for row in taken]
    return QueryResult(
        columns=list(columns),
        data=data,
        row_count=len(data),
        truncated=truncated,
    )


def build_records(
    columns: Sequence[str], rows: Iterable[Sequence[Any]], cap: int
) -> List[Dict[str, Value]]:
    """Same bounding as ``build_envelope``, shaped as column-keyed objects."""
    taken, _ = _take(rows, cap)
    return [map_record(columns, row) for row in taken]
