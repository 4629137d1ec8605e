"""Query cache for directory search results.

Entries are keyed by ``(normalized query, scope)`` so every session searching
the same text inside one directory shares them. An entry is a whole
replacement of the previous one and carries its own write timestamp; reads
reject entries older than the TTL regardless of what the backing store still
holds.
"""

import hashlib
import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional
import structlog

from libs.common.metrics import MetricsCollector
from libs.directory_store.base import KeyValueStore

logger = structlog.get_logger("discovery_service.query_cache")

DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CacheEntry:
    """A cached result list for one query inside one scope."""
    query_text: str
    query_normalized: str
    scope_id: str
    results: List[Dict[str, Any]]
    results_count: int
    cached_at: float

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, default=str)

    @classmethod
    def from_json(cls, payload: str) -> "CacheEntry":
        data = json.loads(payload)
        return cls(
            query_text=data["query_text"],
            query_normalized=data["query_normalized"],
            scope_id=data["scope_id"],
            results=list(data["results"]),
            results_count=int(data["results_count"]),
            cached_at=float(data["cached_at"]),
        )


class QueryCache:
    """Time-bounded memoization of search results.

    Parameters
    - store: Backing ``KeyValueStore`` (Redis in production)
    - ttl_seconds: Maximum age of a servable entry
    - clock: Returns the current time in epoch seconds
    - metrics: Optional collector for hit/miss counters
    """

    key_prefix = "discovery:query:"

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.metrics = metrics

    def _generate_cache_key(self, query_normalized: str, scope_id: str) -> str:
        """Generate cache key from the normalized query and scope."""
        digest = hashlib.md5(query_normalized.encode("utf-8")).hexdigest()
        return f"{self.key_prefix}{scope_id}:{digest}"

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return (self.clock() - entry.cached_at) <= self.ttl_seconds

    def _record(self, hit: bool) -> None:
        if self.metrics is None:
            return
        if hit:
            self.metrics.record_cache_hit("search_results")
        else:
            self.metrics.record_cache_miss("search_results")

    async def get(self, query_normalized: str, scope_id: str) -> Optional[List[Dict[str, Any]]]:
        """Return cached results, or ``None`` on miss.

        Never raises: store failures and undecodable payloads count as misses.
        """
        try:
            cache_key = self._generate_cache_key(query_normalized, scope_id)
            payload = await self.store.get(cache_key)

            if not payload:
                logger.debug("Search results cache miss", query=query_normalized[:50])
                self._record(False)
                return None

            entry = CacheEntry.from_json(payload)
            if not self._is_fresh(entry):
                logger.debug(
                    "Search results cache entry expired",
                    query=query_normalized[:50],
                    age_seconds=round(self.clock() - entry.cached_at, 1)
                )
                self._record(False)
                return None

            if entry.query_normalized != query_normalized or entry.scope_id != scope_id or not entry.results:
                self._record(False)
                return None

            logger.debug("Search results cache hit", query=query_normalized[:50])
            self._record(True)
            return entry.results

        except Exception as e:
            logger.warning("Failed to get cached search results", error=str(e))
            self._record(False)
            return None

    async def put(
        self,
        scope_id: str,
        query_text: str,
        query_normalized: str,
        results: List[Dict[str, Any]]
    ) -> None:
        """Write (replace) the entry for a query. Errors are logged, not raised."""
        try:
            entry = CacheEntry(
                query_text=query_text,
                query_normalized=query_normalized,
                scope_id=scope_id,
                results=list(results),
                results_count=len(results),
                cached_at=self.clock(),
            )
            cache_key = self._generate_cache_key(query_normalized, scope_id)
            await self.store.set(cache_key, entry.to_json(), self.ttl_seconds)

            logger.debug("Search results cached", query=query_normalized[:50], count=len(results))

        except Exception as e:
            logger.warning("Failed to cache search results", error=str(e))


def create_query_cache(
    store: KeyValueStore,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    metrics: Optional[MetricsCollector] = None
) -> QueryCache:
    """Create query cache."""
    return QueryCache(store=store, ttl_seconds=ttl_seconds, metrics=metrics)
