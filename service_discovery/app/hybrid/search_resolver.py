"""Hybrid directory search.

Combines a semantic pass over the vector similarity procedure with a
deterministic substring fallback, behind a shared query cache:

1. normalize the query; an empty query is rejected before any backend call
2. serve a fresh cache entry when one exists
3. run the semantic pass when an embedding is available
4. re-filter semantic hits for relevance, never down to zero
5. fall back to a text scan of the directory when semantic search is
   unavailable, returns nothing, or fails
6. format, rank and cache (fire-and-forget) the final list
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import structlog

from libs.common.background import SideEffectRunner
from libs.common.metrics import MetricsCollector
from libs.directory_store.base import DirectoryStore
from ..errors import EMBEDDING_REQUIRED, EMPTY_QUERY, SEARCH_FAILED
from ..ranking.formatter import (
    DirectoryHit,
    HitSource,
    RankedResult,
    ResultFormatter,
    adapt_hits,
    results_to_dicts,
)
from ..retrievers.embedding_client import EmbeddingClient, coerce_embedding
from ..retrievers.query_cache import QueryCache

logger = structlog.get_logger("discovery_service.search_resolver")

MIN_TERM_LENGTH = 2
MISSING_EMBEDDING_POLICIES = ("fallback", "reject")

_SEPARATORS = re.compile(r"[_\-]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: Optional[str]) -> str:
    """Lowercase, turn underscores/dashes into spaces, collapse whitespace."""
    if not query:
        return ""
    text = _SEPARATORS.sub(" ", query.lower())
    return _WHITESPACE.sub(" ", text).strip()


def query_terms(query_normalized: str) -> List[str]:
    """Distinct terms of a normalized query, ignoring single characters.

    A query made only of single characters is matched as a whole.
    """
    terms: List[str] = []
    for term in query_normalized.split(" "):
        if len(term) >= MIN_TERM_LENGTH and term not in terms:
            terms.append(term)
    if not terms and query_normalized:
        terms.append(query_normalized)
    return terms


def _results_message(count: int, query: str) -> str:
    return f'Found {count} business{"es" if count != 1 else ""} matching "{query}":'


@dataclass
class SearchOutcome:
    """Result of one directory search."""
    success: bool
    query: str
    query_normalized: str
    message: str
    results: List[RankedResult] = field(default_factory=list)
    from_cache: bool = False
    error: Optional[str] = None
    search_type: str = "none"

    @property
    def results_count(self) -> int:
        return len(self.results)


class HybridSearchResolver:
    """Resolves a free-text query to ranked directory results.

    Parameters
    - directory: ``DirectoryStore`` providing semantic search and fallback rows
    - cache: ``QueryCache`` shared by all sessions of a scope
    - formatter: ``ResultFormatter`` used for ranking and annotation
    - side_effects: Runner used for the fire-and-forget cache write
    - similarity_threshold: Backend threshold, 0.4 (recall) to 0.65 (precision)
    - high_confidence_similarity: Normalized score that bypasses term matching
    - missing_embedding_policy: ``fallback`` or ``reject`` when no vector exists
    - embedding_client: Optional client used when the request has no vector
    """

    def __init__(
        self,
        directory: DirectoryStore,
        cache: QueryCache,
        formatter: ResultFormatter,
        side_effects: SideEffectRunner,
        similarity_threshold: float = 0.5,
        high_confidence_similarity: int = 65,
        default_limit: int = 10,
        max_limit: int = 50,
        fallback_scan_limit: int = 500,
        missing_embedding_policy: str = "fallback",
        embedding_client: Optional[EmbeddingClient] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        if missing_embedding_policy not in MISSING_EMBEDDING_POLICIES:
            raise ValueError(f"Unknown missing embedding policy: {missing_embedding_policy}")

        self.directory = directory
        self.cache = cache
        self.formatter = formatter
        self.side_effects = side_effects
        self.similarity_threshold = similarity_threshold
        self.high_confidence_similarity = high_confidence_similarity
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.fallback_scan_limit = fallback_scan_limit
        self.missing_embedding_policy = missing_embedding_policy
        self.embedding_client = embedding_client
        self.metrics = metrics

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return self.default_limit
        return min(int(limit), self.max_limit)

    async def resolve(
        self,
        raw_query: Optional[str],
        scope_id: str,
        embedding: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None
    ) -> SearchOutcome:
        """Perform a hybrid search inside one scope."""
        query = (raw_query or "").strip()
        query_normalized = normalize_query(query)

        if not query_normalized:
            return SearchOutcome(
                success=False,
                query=query,
                query_normalized="",
                message="Please provide a search query.",
                error=EMPTY_QUERY,
            )

        limit = self._clamp_limit(limit)
        start_time = time.perf_counter()

        cached = await self.cache.get(query_normalized, scope_id)
        if cached:
            results = self.formatter.format_records(HitSource.CACHED, cached[:limit])
            if results:
                logger.info("Search cache hit", query=query_normalized[:50], scope_id=scope_id)
                self._record_search("cache", start_time)
                return SearchOutcome(
                    success=True,
                    query=query,
                    query_normalized=query_normalized,
                    message=_results_message(len(results), query),
                    results=results,
                    from_cache=True,
                    search_type="cache",
                )

        vector = coerce_embedding(embedding)
        if vector is None and self.embedding_client is not None:
            vector = await self.embedding_client.embed(query_normalized)

        if vector is None and self.missing_embedding_policy == "reject":
            logger.info("Search rejected without embedding", query=query_normalized[:50])
            return SearchOutcome(
                success=False,
                query=query,
                query_normalized=query_normalized,
                message="Search requires embedding. Please try again.",
                error=EMBEDDING_REQUIRED,
            )

        terms = query_terms(query_normalized)
        hits: List[DirectoryHit] = []
        search_type = "fallback"

        if vector is not None:
            try:
                hits = await self._semantic_search(query, vector, scope_id, limit)
                search_type = "semantic"
            except Exception as e:
                logger.error("Semantic search failed", scope_id=scope_id, error=str(e))

            if hits:
                hits = self._relevance_filter(hits, terms)

        if not hits:
            try:
                hits = await self._fallback_search(scope_id, terms, limit)
                search_type = "fallback"
            except Exception as e:
                logger.error("Fallback search failed", scope_id=scope_id, error=str(e))
                return SearchOutcome(
                    success=False,
                    query=query,
                    query_normalized=query_normalized,
                    message="Search failed. Please try again.",
                    error=SEARCH_FAILED,
                )

        self._record_search(search_type, start_time)

        if not hits:
            logger.info("Search found no matches", query=query_normalized[:50], scope_id=scope_id)
            return SearchOutcome(
                success=True,
                query=query,
                query_normalized=query_normalized,
                message=f'No businesses found matching "{query}". Try different keywords.',
                search_type=search_type,
            )

        results = self.formatter.format(hits)
        self.side_effects.spawn(
            self.cache.put(scope_id, query, query_normalized, results_to_dicts(results, include_derived=False)),
            operation="query_cache.put",
        )

        logger.info(
            "Search completed",
            query=query_normalized[:50],
            scope_id=scope_id,
            search_type=search_type,
            results_count=len(results),
            cache_miss=True
        )

        return SearchOutcome(
            success=True,
            query=query,
            query_normalized=query_normalized,
            message=_results_message(len(results), query),
            results=results,
            search_type=search_type,
        )

    async def _semantic_search(
        self,
        query: str,
        vector: List[float],
        scope_id: str,
        limit: int
    ) -> List[DirectoryHit]:
        """Vector similarity pass; similarity normalized by the vector adapter."""
        records = await self.directory.semantic_search(
            query_text=query,
            embedding=vector,
            scope_id=scope_id,
            threshold=self.similarity_threshold,
            limit=limit,
        )
        hits = adapt_hits(HitSource.VECTOR, records)[:limit]
        logger.info("Semantic search completed", results_count=len(hits))
        return hits

    def _relevance_filter(self, hits: List[DirectoryHit], terms: Sequence[str]) -> List[DirectoryHit]:
        """Keep confident or text-matching hits; never filter down to nothing."""
        filtered = [
            hit for hit in hits
            if (hit.similarity or 0) >= self.high_confidence_similarity or hit.matches_any(terms)
        ]

        if not filtered:
            logger.info("Relevance filter would drop every hit, keeping originals", original_count=len(hits))
            return hits

        logger.info("Relevance filter applied", original_count=len(hits), filtered_count=len(filtered))
        return filtered

    async def _fallback_search(
        self,
        scope_id: str,
        terms: Sequence[str],
        limit: int
    ) -> List[DirectoryHit]:
        """Substring scan of the scope's directory rows."""
        rows = await self.directory.list_directory_rows(scope_id, self.fallback_scan_limit)

        matched: List[Dict[str, Any]] = []
        for row in rows:
            text = " ".join(
                str(row.get(key) or "")
                for key in ("business_name", "short_description", "ai_enhanced_description", "description", "industry")
            ).casefold()
            if any(term in text for term in terms):
                matched.append(row)
                if len(matched) >= limit:
                    break

        hits = adapt_hits(HitSource.FALLBACK, matched)
        logger.info("Fallback search completed", scanned=len(rows), results_count=len(hits))
        return hits

    def _record_search(self, search_type: str, start_time: float) -> None:
        if self.metrics is not None:
            self.metrics.record_search(search_type, time.perf_counter() - start_time)
