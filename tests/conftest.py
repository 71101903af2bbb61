import duckdb
import pytest
import pytest_asyncio

from dashquery.core.analytics.executor import QueryExecutor
from dashquery.core.analytics.service import AnalyticsService
from dashquery.core.config import Settings
from dashquery.core.database import Database


SEED_SQL = """
CREATE TABLE data_source_sales (
    id INTEGER,
    region VARCHAR,
    value DOUBLE,
    ts TIMESTAMP,
    payload BLOB
);
INSERT INTO data_source_sales VALUES
    (1, 'north', 10.0, TIMESTAMP '2024-01-01 10:00:00', 'a'::BLOB),
    (2, 'north', 20.0, TIMESTAMP '2024-01-01 15:00:00', 'b'::BLOB),
    (3, 'south', 30.0, TIMESTAMP '2024-01-02 09:00:00', 'c'::BLOB),
    (4, 'south', 50.0, TIMESTAMP '2024-01-02 18:00:00', 'd'::BLOB);

CREATE TABLE data_source_points (id INTEGER, x DOUBLE);
INSERT INTO data_source_points VALUES (1, 1), (2, 2), (3, 3), (4, 4), (5, 100);

CREATE TABLE data_source_stats (id INTEGER, value DOUBLE);
INSERT INTO data_source_stats VALUES (1, 10.0), (2, 20.0), (3, 30.0), (4, 40.0), (5, 50.0);

CREATE TABLE data_source_pairs (a DOUBLE, b DOUBLE, c DOUBLE);
INSERT INTO data_source_pairs VALUES (1, 2, -1), (2, 4, -2), (3, 6, -3), (4, 8, -4);

CREATE TABLE data_source_quality (name VARCHAR, score INTEGER);
INSERT INTO data_source_quality VALUES ('a', 1), ('b', NULL), ('a', 3), (NULL, 4);

CREATE TABLE data_source_big AS SELECT range AS n FROM range(12000);

CREATE TABLE data_source_empty (a DOUBLE, b DOUBLE);
"""


# Fresh in-memory database per test, seeded with a few data source tables
@pytest.fixture(scope="function")
def db():
    database = Database(duckdb.connect(":memory:"))
    for statement in SEED_SQL.split(";"):
        if statement.strip():
            database.conn.execute(statement)
    yield database
    database.close()


@pytest.fixture(scope="function")
def test_settings():
    return Settings(
        DATABASE_PATH=":memory:",
        QUERY_CACHE_ENABLED=False,
        SQL_STRICT_GUARD=False,
    )


@pytest.fixture(scope="function")
def executor(db: Database):
    return QueryExecutor(db)


@pytest_asyncio.fixture(scope="function")
async def service(db: Database, test_settings: Settings):
    yield AnalyticsService(db, config=test_settings)


@pytest_asyncio.fixture(scope="function")
async def cached_service(db: Database):
    config = Settings(DATABASE_PATH=":memory:", QUERY_CACHE_ENABLED=True, CACHE_TTL=300)
    yield AnalyticsService(db, config=config)
