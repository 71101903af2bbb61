import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence

from dashquery.core.schemas import CacheEntry, QueryResult

logger = logging.getLogger(__name__)


def cache_key(
    sql: str, data_source_id: Optional[str] = None, params: Sequence[Any] = ()
) -> str:
    """SHA-256 of the query text, its bound parameters and the target data source."""
    digest = hashlib.sha256()
    digest.update(sql.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(repr(tuple(params)).encode("utf-8"))
    digest.update(b"\x00")
    digest.update((data_source_id or "").encode("utf-8"))
    return digest.hexdigest()


class QueryCache:
    """
    In-process TTL snapshot store for query results.

    Expiry is checked lazily on lookup; there is no background sweep.
    Entries are immutable and only ever replaced.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            logger.info(f"Cache entry {entry.id} expired at {entry.expires_at}")
            self._entries.pop(key, None)
            return None

        return entry

    def store(
        self,
        key: str,
        sql: str,
        result: QueryResult,
        data_source_id: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> CacheEntry:
        entry = CacheEntry.create(
            query_hash=key,
            query_sql=sql,
            result_data=result,
            data_source_id=data_source_id,
            ttl_seconds=self.ttl_seconds if ttl_seconds is None else ttl_seconds,
            now=self._clock(),
        )
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()
