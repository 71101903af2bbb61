import asyncio
import logging
from typing import Optional

import duckdb

from dashquery.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def create_connection(config: Settings) -> duckdb.DuckDBPyConnection:
    """Open and configure the DuckDB connection described by the settings."""
    conn = duckdb.connect(config.DATABASE_PATH)

    # Configure performance settings
    if config.DUCKDB_THREADS:
        conn.execute(f"SET threads = {int(config.DUCKDB_THREADS)}")

    if config.DUCKDB_MEMORY_LIMIT:
        conn.execute(f"SET memory_limit = '{config.DUCKDB_MEMORY_LIMIT}'")

    conn.execute("SET enable_progress_bar = false")

    logger.info(f"Opened DuckDB connection to {config.DATABASE_PATH}")
    return conn


class Database:
    """
    Owner of the single shared DuckDB connection.

    Every statement runs while holding ``lock``, so no two queries touch the
    engine at the same time. Callers receive this handle explicitly instead
    of importing a module-level connection.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self._conn: Optional[duckdb.DuckDBPyConnection] = conn
        self.lock = asyncio.Lock()

    @classmethod
    def open(cls, config: Optional[Settings] = None) -> "Database":
        return cls(create_connection(config or default_settings))

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("Database connection is closed")
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn is None

    async def ping(self) -> bool:
        """Run ``SELECT 1`` through the lock to check the connection."""
        async with self.lock:
            row = await asyncio.to_thread(
                lambda: self.conn.execute("SELECT 1").fetchone()
            )
        return bool(row and row[0] == 1)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Closed DuckDB connection")
