import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple, TypeVar

import duckdb

from dashquery.core.analytics.compiler import CompiledQuery
from dashquery.core.analytics.envelope import build_envelope, build_records
from dashquery.core.analytics.safety import validate_sql
from dashquery.core.database import Database
from dashquery.core.schemas import QueryResult, SafetyMode, Value


# -----------------------------------------------------------------------------
# EXECUTION ADAPTER
# Purpose: run one statement on the shared connection and hand its rows out.
# The connection lock is held from prepare to the last fetched row.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Receives column names and a lazy row iterator, returns the materialized result
RowConsumer = Callable[[List[str], Iterator[Tuple[Any, ...]]], T]


def iter_rows(conn: duckdb.DuckDBPyConnection) -> Iterator[Tuple[Any, ...]]:
    """Yield result rows one fetch at a time."""
    while True:
        row = conn.fetchone()
        if row is None:
            return
        yield row


class QueryExecutor:
    """
    Runs validated SQL against the single shared DuckDB connection.

    Validation happens before the lock is requested, so rejected statements
    never wait behind other queries. The blocking engine work runs in a
    worker thread while the event loop keeps serving other tasks.
    """

    def __init__(self, db: Database, strict: bool = False):
        self.db = db
        self.strict = strict

    def _run(self, query: CompiledQuery, consume: RowConsumer) -> T:
        conn = self.db.conn
        if query.params:
            cursor = conn.execute(query.sql, list(query.params))
        else:
            cursor = conn.execute(query.sql)

        # Column names come from the statement metadata, before any row
        columns = [d[0] for d in cursor.description] if cursor.description else []
        return consume(columns, iter_rows(cursor))

    async def run(
        self,
        query: CompiledQuery,
        consume: RowConsumer,
        mode: SafetyMode = SafetyMode.GENERAL,
        validate: bool = True,
    ) -> T:
        """
        Validate, then execute ``query`` under the connection lock.

        ``validate=False`` is reserved for statements whose identifiers come
        from the engine's own catalog rather than from a caller.
        """
        if validate:
            validate_sql(query.sql, mode, strict=self.strict)
        logger.debug(f"Executing SQL: {query.sql}")

        async with self.db.lock:
            work = asyncio.ensure_future(asyncio.to_thread(self._run, query, consume))
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                # The engine call runs to completion; keep the lock until it returns
                await asyncio.gather(work, return_exceptions=True)
                raise
            except duckdb.Error as error:
                logger.error(f"Query failed: {error}")
                raise

    async def execute(
        self,
        query: CompiledQuery,
        cap: int,
        mode: SafetyMode = SafetyMode.GENERAL,
        validate: bool = True,
    ) -> QueryResult:
        """Execute and build a columns + rows envelope of at most ``cap`` rows."""
        return await self.run(query, partial(build_envelope, cap=cap), mode, validate)

    async def fetch_records(
        self,
        query: CompiledQuery,
        cap: int,
        mode: SafetyMode = SafetyMode.READ_ONLY,
    ) -> List[Dict[str, Value]]:
        """Execute and return column-name-keyed records (streaming shape)."""
        return await self.run(query, partial(build_records, cap=cap), mode)

    async def execute_sql(
        self,
        sql: str,
        cap: int,
        params: Sequence[Any] = (),
        mode: SafetyMode = SafetyMode.GENERAL,
    ) -> QueryResult:
        return await self.execute(CompiledQuery(sql, tuple(params)), cap, mode)
