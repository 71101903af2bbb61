from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from dashquery.core.analytics.cache import QueryCache, cache_key
from dashquery.core.schemas import CacheEntry, QueryResult


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: int):
        self.now += timedelta(seconds=seconds)


def _result() -> QueryResult:
    return QueryResult(columns=["n"], data=[[1]], row_count=1)


def test_entry_is_fresh_right_after_creation():
    entry = CacheEntry.create(
        "hash123", "SELECT * FROM table", QueryResult.empty(), "source-1", ttl_seconds=300
    )
    assert entry.query_hash == "hash123"
    assert entry.data_source_id == "source-1"
    assert not entry.is_expired()


def test_entry_expires_after_ttl():
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    entry = CacheEntry.create("h", "SELECT 1", _result(), ttl_seconds=300, now=created)

    assert not entry.is_expired(created + timedelta(seconds=299))
    assert entry.is_expired(created + timedelta(seconds=300))
    assert entry.is_expired(created + timedelta(seconds=301))


def test_entries_are_immutable():
    entry = CacheEntry.create("h", "SELECT 1", _result())
    with pytest.raises(pydantic.ValidationError):
        entry.query_sql = "SELECT 2"


def test_lookup_returns_fresh_entry_and_drops_expired():
    clock = FakeClock()
    cache = QueryCache(ttl_seconds=300, clock=clock)
    key = cache_key("SELECT 1")

    stored = cache.store(key, "SELECT 1", _result())
    assert cache.lookup(key) == stored

    clock.advance(301)
    assert cache.lookup(key) is None
    assert len(cache) == 0


def test_store_replaces_previous_entry():
    cache = QueryCache()
    key = cache_key("SELECT 1")
    first = cache.store(key, "SELECT 1", _result())
    second = cache.store(key, "SELECT 1", QueryResult.empty())

    assert first.id != second.id
    assert cache.lookup(key) == second
    assert len(cache) == 1


def test_missing_key_returns_none():
    assert QueryCache().lookup("nope") is None


def test_cache_key_depends_on_target_and_params():
    base = cache_key("SELECT 1")
    assert base == cache_key("SELECT 1")
    assert base != cache_key("SELECT 1", "source-1")
    assert cache_key("SELECT ?", params=(1,)) != cache_key("SELECT ?", params=(2,))


def test_entry_keeps_its_own_copy_of_the_result():
    result = _result()
    entry = CacheEntry.create("h", "SELECT 1", result)

    result.data[0][0] = 99
    assert entry.result_data.data == [[1]]

    snapshot = entry.snapshot()
    snapshot.data[0][0] = 42
    assert entry.snapshot().data == [[1]]
