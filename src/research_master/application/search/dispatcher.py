"""
SearchDispatcher - concurrent, rate-limited, cached fan-out over providers.

Every public operation follows the same route:

1. Resolve targets: registered providers whose capability set contains the
   operation's flag, optionally narrowed to an explicit id list. Unknown or
   incapable ids become failure entries; they are never invoked.
2. Per provider, one task:
   cache lookup (a hit skips the rate limiter entirely) → rate-limiter
   admission → circuit breaker → adapter call → cache store.
3. Await all tasks, bounded by an optional deadline. Tasks still running at
   the deadline are cancelled (their admission slot is released on the way
   out) and reported as :class:`DeadlineExceededError`.
4. Aggregate outcomes in registration order; searches are merged and
   stable-sorted by the query's sort key, with optional de-duplication.

A provider's failure is recorded in the result and never cancels its
siblings. Only programmer errors (invalid arguments) propagate.

Example:
    dispatcher = SearchDispatcher(registry, RateLimiter(), cache)
    result = await dispatcher.search(
        SearchQuery.builder("transformers").max_results(5).year("2020-").build(),
        deadline=20.0,
    )
    for failure in result.failures:
        print(failure.source_id, failure.error)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from research_master.application.ports import CacheKind, ResultCachePort
from research_master.application.sources.registry import RegistryEntry, SourceRegistry
from research_master.domain.entities import (
    CitationRequest,
    DownloadRequest,
    DownloadResult,
    Paper,
    ReadRequest,
    ReadResult,
    SearchQuery,
    SearchResponse,
    Source,
    SourceCapabilities,
    has,
    normalize_text,
)
from research_master.shared.async_utils import CircuitBreaker
from research_master.shared.exceptions import (
    CacheIOError,
    CircuitOpenError,
    DeadlineExceededError,
    InvalidParameterError,
    ProviderError,
    ResearchMasterError,
    UnknownSourceError,
    UnsupportedOperationError,
    is_retryable_error,
)

from .fingerprint import fingerprint
from .rate_limiter import RateLimiter
from .result_aggregator import DeduplicationStrategy, deduplicate_papers, merge_responses
from .results import (
    DispatchResult,
    LookupResult,
    ProviderFailure,
    ProviderOutcome,
    ProviderSuccess,
    SearchResult,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()

T = TypeVar("T")


@dataclass(frozen=True)
class _Call(Generic[T]):
    """One logical operation to fan out."""

    operation: str
    flag: SourceCapabilities
    invoke: Callable[[Source], Awaitable[T]]
    cache_fields: Mapping[str, Any] | None = None
    ttl: float = 0.0
    kind: CacheKind = "searches"


class SearchDispatcher:
    """
    Dispatch engine shared by reference for the life of the process.

    Args:
        registry: Frozen source registry (routing authority)
        rate_limiter: Per-provider pacing plus global concurrency ceiling
        cache: Optional result cache; ``None`` disables caching
        search_ttl: TTL (seconds) for search / author / DOI results
        citation_ttl: TTL (seconds) for citation / reference / related results
        default_deadline: Whole-call deadline when the caller passes none
        circuit_breaker_threshold: Consecutive retryable failures that open a
            provider's breaker (``0`` disables breakers)
        circuit_recovery_seconds: Time an open breaker waits before a trial call
        dedup_strategy: Strategy used when a search asks for de-duplication
    """

    def __init__(
        self,
        registry: SourceRegistry,
        rate_limiter: RateLimiter,
        cache: ResultCachePort | None = None,
        *,
        search_ttl: float = 1800,
        citation_ttl: float = 900,
        default_deadline: float | None = None,
        circuit_breaker_threshold: int = 5,
        circuit_recovery_seconds: float = 60.0,
        dedup_strategy: DeduplicationStrategy = DeduplicationStrategy.STRICT,
    ) -> None:
        self._registry = registry
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._search_ttl = search_ttl
        self._citation_ttl = citation_ttl
        self._default_deadline = default_deadline
        self._dedup_strategy = dedup_strategy
        self._breakers: dict[str, CircuitBreaker] = {}
        if circuit_breaker_threshold > 0:
            self._breakers = {
                entry.source_id: CircuitBreaker(
                    source_id=entry.source_id,
                    failure_threshold=circuit_breaker_threshold,
                    recovery_timeout=circuit_recovery_seconds,
                )
                for entry in registry.entries()
            }

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def cache(self) -> ResultCachePort | None:
        return self._cache

    def breaker_for(self, source_id: str) -> CircuitBreaker | None:
        return self._breakers.get(source_id)

    def downloadable(self) -> list[Source]:
        """Providers that can download PDFs."""
        return list(self._registry.with_capability(SourceCapabilities.DOWNLOAD))

    # =========================================================================
    # Search operations
    # =========================================================================

    async def search(
        self,
        query: SearchQuery,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
        deduplicate: bool = False,
        dedup_strategy: DeduplicationStrategy | None = None,
    ) -> SearchResult:
        """
        Search every SEARCH-capable provider (or the ``sources`` subset).

        Args:
            query: Built query, shared read-only by all provider calls
            sources: Explicit provider ids; ``None`` means all capable providers
            deadline: Seconds for the whole call (``None`` = no deadline)
            deduplicate: Collapse duplicate papers after merging
            dedup_strategy: Override the dispatcher's de-duplication strategy

        Returns:
            SearchResult with merged papers and per-provider outcomes
        """
        call: _Call[SearchResponse] = _Call(
            operation="search",
            flag=SourceCapabilities.SEARCH,
            invoke=lambda source: source.search(query),
            cache_fields=query.cache_fields(),
            ttl=self._search_ttl,
            kind="searches",
        )
        outcomes = await self._fan_out(call, sources, deadline)
        return self._search_result(
            "search", outcomes, query, deduplicate, dedup_strategy or self._dedup_strategy
        )

    async def search_by_author(
        self,
        author: str,
        *,
        max_results: int = 10,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
        deduplicate: bool = False,
    ) -> SearchResult:
        """Papers by ``author`` from AUTHOR_SEARCH-capable providers."""
        if not author or not author.strip():
            raise InvalidParameterError("author", author, "a non-empty author name")
        query = SearchQuery(query="", author=author.strip(), max_results=max_results)
        call: _Call[SearchResponse] = _Call(
            operation="search_by_author",
            flag=SourceCapabilities.AUTHOR_SEARCH,
            invoke=lambda source: source.search_by_author(query.author or "", max_results),
            cache_fields={"author": normalize_text(author), "max_results": max_results},
            ttl=self._search_ttl,
            kind="searches",
        )
        outcomes = await self._fan_out(call, sources, deadline)
        return self._search_result(
            "search_by_author", outcomes, query, deduplicate, self._dedup_strategy
        )

    # =========================================================================
    # Per-paper operations
    # =========================================================================

    async def get_by_doi(
        self,
        doi: str,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> LookupResult:
        """Look a DOI up on every DOI_LOOKUP-capable provider."""
        if not doi or not doi.strip():
            raise InvalidParameterError("doi", doi, "a non-empty DOI")
        doi = doi.strip()
        call: _Call[Paper] = _Call(
            operation="get_by_doi",
            flag=SourceCapabilities.DOI_LOOKUP,
            invoke=lambda source: source.get_by_doi(doi),
            cache_fields={"doi": doi.lower()},
            ttl=self._search_ttl,
            kind="searches",
        )
        outcomes = await self._fan_out(call, sources, deadline)
        return LookupResult("get_by_doi", tuple(outcomes))

    async def get_citations(
        self,
        request: CitationRequest | str,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> SearchResult:
        """Papers citing ``request.paper_id`` (CITATIONS capability)."""
        return await self._citation_lookup("get_citations", request, sources, deadline)

    async def get_references(
        self,
        request: CitationRequest | str,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> SearchResult:
        """Papers referenced by ``request.paper_id`` (CITATIONS capability)."""
        return await self._citation_lookup("get_references", request, sources, deadline)

    async def get_related(
        self,
        request: CitationRequest | str,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> SearchResult:
        """Papers related to ``request.paper_id`` (CITATIONS capability)."""
        return await self._citation_lookup("get_related", request, sources, deadline)

    async def download(
        self,
        request: DownloadRequest,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> DispatchResult[DownloadResult]:
        """Download a PDF through DOWNLOAD-capable providers. Never cached."""
        call: _Call[DownloadResult] = _Call(
            operation="download",
            flag=SourceCapabilities.DOWNLOAD,
            invoke=lambda source: source.download(request),
        )
        outcomes = await self._fan_out(call, sources, deadline)
        return DispatchResult("download", tuple(outcomes))

    async def read(
        self,
        request: ReadRequest,
        *,
        sources: Iterable[str] | None = None,
        deadline: float | None = _UNSET,
    ) -> DispatchResult[ReadResult]:
        """Extract text through READ-capable providers. Never cached."""
        call: _Call[ReadResult] = _Call(
            operation="read",
            flag=SourceCapabilities.READ,
            invoke=lambda source: source.read(request),
        )
        outcomes = await self._fan_out(call, sources, deadline)
        return DispatchResult("read", tuple(outcomes))

    async def aclose(self) -> None:
        await self._registry.aclose()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _citation_lookup(
        self,
        operation: str,
        request: CitationRequest | str,
        sources: Iterable[str] | None,
        deadline: float | None,
    ) -> SearchResult:
        if isinstance(request, str):
            request = CitationRequest(paper_id=request)
        call: _Call[SearchResponse] = _Call(
            operation=operation,
            flag=SourceCapabilities.CITATIONS,
            invoke=lambda source: getattr(source, operation)(request),
            cache_fields=request.cache_fields(),
            ttl=self._citation_ttl,
            kind="citations",
        )
        outcomes = await self._fan_out(call, sources, deadline)
        papers = merge_responses(
            o.value for o in outcomes if isinstance(o, ProviderSuccess)
        )
        return SearchResult(operation, tuple(outcomes), papers=tuple(papers))

    def _search_result(
        self,
        operation: str,
        outcomes: list[ProviderOutcome[SearchResponse]],
        query: SearchQuery,
        deduplicate: bool,
        strategy: DeduplicationStrategy,
    ) -> SearchResult:
        papers = merge_responses(
            (o.value for o in outcomes if isinstance(o, ProviderSuccess)),
            query.sort_by,
        )
        if deduplicate:
            before = len(papers)
            papers = deduplicate_papers(papers, strategy)
            logger.debug(f"{operation}: de-duplicated {before} -> {len(papers)} papers")

        failed = [o.source_id for o in outcomes if isinstance(o, ProviderFailure)]
        logger.info(
            f"{operation} {query.query or query.author!r}: {len(papers)} papers from "
            f"{len(outcomes) - len(failed)} sources"
            + (f", failed: {', '.join(failed)}" if failed else "")
        )
        return SearchResult(
            operation,
            tuple(outcomes),
            query=query,
            papers=tuple(papers),
            deduplicated=deduplicate,
        )

    def _resolve(
        self,
        call: _Call[Any],
        sources: Iterable[str] | None,
    ) -> tuple[list[RegistryEntry], list[ProviderFailure]]:
        """Target entries in registration order, plus rejections for bad ids."""
        if sources is None:
            return list(self._registry.entries_with(call.flag)), []

        if isinstance(sources, str):
            sources = [sources]
        rejected: list[ProviderFailure] = []
        selected: set[str] = set()
        for source_id in dict.fromkeys(sources):
            capabilities = self._registry.capabilities_of(source_id)
            if capabilities is None:
                logger.warning(f"{call.operation}: unknown source requested: {source_id}")
                rejected.append(ProviderFailure(source_id, UnknownSourceError(source_id)))
            elif not has(capabilities, call.flag):
                rejected.append(
                    ProviderFailure(
                        source_id,
                        UnsupportedOperationError(call.operation, source_id=source_id),
                    )
                )
            else:
                selected.add(source_id)

        entries = [e for e in self._registry.entries() if e.source_id in selected]
        return entries, rejected

    async def _fan_out(
        self,
        call: _Call[T],
        sources: Iterable[str] | None,
        deadline: float | None,
    ) -> list[ProviderOutcome[T]]:
        entries, rejected = self._resolve(call, sources)
        if not entries:
            return list(rejected)

        deadline = self._default_deadline if deadline is _UNSET else deadline
        started = time.perf_counter()
        tasks = {
            entry.source_id: asyncio.create_task(
                self._run_one(call, entry),
                name=f"{call.operation}:{entry.source_id}",
            )
            for entry in entries
        }
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
            if pending:
                logger.warning(
                    f"{call.operation}: deadline {deadline}s reached, cancelling "
                    f"{', '.join(t.get_name() for t in pending)}"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        outcomes: list[ProviderOutcome[T]] = []
        for source_id, task in tasks.items():
            if task.cancelled():
                elapsed_ms = (time.perf_counter() - started) * 1000
                outcomes.append(
                    ProviderFailure(
                        source_id,
                        DeadlineExceededError(source_id, deadline or 0.0),
                        elapsed_ms,
                    )
                )
            else:
                outcomes.append(task.result())
        return outcomes + rejected

    async def _run_one(self, call: _Call[T], entry: RegistryEntry) -> ProviderOutcome[T]:
        """Run one provider call; every failure becomes a ProviderFailure."""
        source_id = entry.source_id
        started = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        key: str | None = None
        if self._cache is not None and call.cache_fields is not None:
            key = fingerprint(call.operation, source_id, call.cache_fields)
            cached = self._cache_get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {call.operation} on {source_id}")
                return ProviderSuccess(source_id, cached, cached=True, elapsed_ms=elapsed())

        breaker = self._breakers.get(source_id)
        try:
            if breaker is not None and breaker.is_open:
                raise CircuitOpenError(source_id, retry_after=breaker.recovery_timeout)
            async with self._rate_limiter.acquire(source_id):
                if breaker is None:
                    value = await call.invoke(entry.source)
                else:
                    async with breaker:
                        value = await call.invoke(entry.source)
        except ResearchMasterError as e:
            logger.warning(f"{call.operation} failed on {source_id}: {e}")
            return ProviderFailure(source_id, e, elapsed())
        except Exception as e:
            logger.warning(f"{call.operation} failed on {source_id}: {type(e).__name__}: {e}")
            error = ProviderError(
                f"{type(e).__name__}: {e}",
                source_id=source_id,
                retryable=is_retryable_error(e),
            )
            error.__cause__ = e
            return ProviderFailure(source_id, error, elapsed())

        if key is not None:
            self._cache_put(key, value, call.ttl, call.kind)
        return ProviderSuccess(source_id, value, cached=False, elapsed_ms=elapsed())

    def _cache_get(self, key: str) -> Any | None:
        try:
            return self._cache.get(key) if self._cache is not None else None
        except CacheIOError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

    def _cache_put(self, key: str, value: Any, ttl: float, kind: CacheKind) -> None:
        if self._cache is None:
            return
        try:
            self._cache.put(key, value, ttl, kind=kind)
        except CacheIOError as e:
            logger.warning(f"Cache write failed, result not cached: {e}")
