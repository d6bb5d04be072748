"""
Tests for SearchDispatcher: fan-out, failure isolation, caching,
admission, deadlines and cancellation.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any

import pytest

from research_master.application.search.fingerprint import fingerprint
from research_master.application.search.rate_limiter import RateLimiter
from research_master.application.search.result_aggregator import DeduplicationStrategy
from research_master.domain.entities import (
    CitationRequest,
    DownloadRequest,
    PaperBuilder,
    ReadRequest,
    SearchQuery,
    SortBy,
)
from research_master.domain.entities import SourceCapabilities as Caps
from research_master.infrastructure.cache import ResultCache
from research_master.shared.exceptions import (
    CacheIOError,
    CircuitOpenError,
    DeadlineExceededError,
    InvalidParameterError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitTimeoutError,
    UnknownSourceError,
    UnsupportedOperationError,
)

from conftest import MockSource, build_dispatcher, make_paper


class RecordingCache:
    """In-memory ResultCachePort that records every call."""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.puts: list[tuple[str, float, str]] = []

    def get(self, key: str) -> Any | None:
        return self.store.get(key)

    def put(self, key: str, value: Any, ttl: float, *, kind: str = "searches") -> None:
        self.store[key] = value
        self.puts.append((key, ttl, kind))


class BrokenCache:
    """Cache whose persistent tier always fails."""

    def get(self, key: str) -> Any | None:
        raise CacheIOError("disk gone")

    def put(self, key: str, value: Any, ttl: float, *, kind: str = "searches") -> None:
        raise CacheIOError("disk gone")


# ============================================================
# Fan-out and aggregation
# ============================================================


class TestSearchFanOut:
    async def test_end_to_end_with_one_failure(self):
        sources = [
            MockSource("a", papers=[make_paper("a1", "a", published="2020")]),
            MockSource("b", papers=[make_paper("b1", "b", published="2022")]),
            MockSource("c", papers=[make_paper("c1", "c", published="2021")]),
            MockSource("d", error=NetworkError("connection reset", source_id="d")),
        ]
        dispatcher = build_dispatcher(sources)
        result = await dispatcher.search(SearchQuery("ml", sort_by=SortBy.DATE))

        assert [p.paper_id for p in result.papers] == ["b1", "c1", "a1"]
        assert [o.source_id for o in result.outcomes] == ["a", "b", "c", "d"]
        assert [f.source_id for f in result.failures] == ["d"]
        assert isinstance(result.failures[0].error, NetworkError)
        assert result.is_partial
        assert all(s.call_count == 1 for s in sources)

    async def test_relevance_keeps_registration_order(self):
        dispatcher = build_dispatcher([
            MockSource("b", papers=[make_paper("b1", "b"), make_paper("b2", "b")]),
            MockSource("a", papers=[make_paper("a1", "a")]),
        ])
        result = await dispatcher.search(SearchQuery("q"))
        assert [p.paper_id for p in result.papers] == ["b1", "b2", "a1"]

    async def test_only_capable_sources_are_called(self):
        searcher = MockSource("a")
        downloader = MockSource("b", Caps.DOWNLOAD)
        dispatcher = build_dispatcher([searcher, downloader])
        result = await dispatcher.search(SearchQuery("q"))
        assert [o.source_id for o in result.outcomes] == ["a"]
        assert downloader.call_count == 0

    async def test_providers_run_concurrently(self):
        dispatcher = build_dispatcher([MockSource(sid, delay=0.1) for sid in "abc"])
        start = time.monotonic()
        result = await dispatcher.search(SearchQuery("q"))
        assert time.monotonic() - start < 0.25
        assert len(result.successes) == 3

    async def test_failure_does_not_cancel_siblings(self):
        slow = MockSource("slow", delay=0.05)
        dispatcher = build_dispatcher([MockSource("fail", error=NetworkError()), slow])
        result = await dispatcher.search(SearchQuery("q"))
        assert not slow.cancelled
        assert result.outcome_for("slow").ok

    async def test_all_failed(self):
        dispatcher = build_dispatcher([MockSource("a", error=NotFoundError("Paper"))])
        result = await dispatcher.search(SearchQuery("q"))
        assert result.all_failed
        assert result.papers == ()

    async def test_unexpected_exception_is_wrapped(self):
        boom = RuntimeError("kaboom")
        dispatcher = build_dispatcher([MockSource("a", error=boom)])
        result = await dispatcher.search(SearchQuery("q"))
        error = result.failures[0].error
        assert isinstance(error, ProviderError)
        assert error.source_id == "a"
        assert error.__cause__ is boom

    async def test_deduplicate(self):
        dispatcher = build_dispatcher([
            MockSource("a", papers=[make_paper("a1", "a", doi="10.1/x")]),
            MockSource("b", papers=[make_paper("b1", "b", doi="10.1/X", citations=3)]),
        ])
        query = SearchQuery("q")
        assert len((await dispatcher.search(query)).papers) == 2

        result = await dispatcher.search(query, deduplicate=True)
        assert [p.paper_id for p in result.papers] == ["a1"]
        assert result.papers[0].citations == 3
        assert result.deduplicated

    async def test_moderate_dedup_override(self):
        title = "A Sufficiently Long Title About Transformers"
        dispatcher = build_dispatcher([
            MockSource("a", papers=[make_paper("a1", "a", title=title, authors=["Ann Lee"])]),
            MockSource("b", papers=[make_paper("b1", "b", title=title, authors=["Lee, Ann"])]),
        ])
        result = await dispatcher.search(
            SearchQuery("q"), deduplicate=True, dedup_strategy=DeduplicationStrategy.MODERATE
        )
        assert len(result.papers) == 1

    async def test_to_dict(self):
        dispatcher = build_dispatcher([MockSource("a"), MockSource("b", error=NetworkError())])
        data = (await dispatcher.search(SearchQuery("deep learning"))).to_dict()
        assert data["operation"] == "search"
        assert data["query"] == "deep learning"
        assert data["total"] == 1
        assert data["sources"][0]["source"] == "a"
        assert data["sources"][0]["count"] == 1
        assert data["failures"][0]["source"] == "b"
        assert data["failures"][0]["type"] == "NetworkError"

    async def test_empty_registry(self):
        dispatcher = build_dispatcher([])
        result = await dispatcher.search(SearchQuery("q"))
        assert result.outcomes == ()
        assert result.papers == ()


# ============================================================
# Explicit source lists
# ============================================================


class TestSourceSelection:
    async def test_subset(self):
        a, b = MockSource("a"), MockSource("b")
        dispatcher = build_dispatcher([a, b])
        result = await dispatcher.search(SearchQuery("q"), sources=["b"])
        assert [o.source_id for o in result.outcomes] == ["b"]
        assert a.call_count == 0

    async def test_subset_follows_registration_order(self):
        dispatcher = build_dispatcher([MockSource("a"), MockSource("b"), MockSource("c")])
        result = await dispatcher.search(SearchQuery("q"), sources=["c", "a", "c"])
        assert [o.source_id for o in result.outcomes] == ["a", "c"]

    async def test_unknown_id_becomes_failure(self):
        a = MockSource("a")
        dispatcher = build_dispatcher([a])
        result = await dispatcher.search(SearchQuery("q"), sources=["a", "nope"])
        assert [o.source_id for o in result.outcomes] == ["a", "nope"]
        assert isinstance(result.failures[0].error, UnknownSourceError)
        assert a.call_count == 1

    async def test_incapable_id_is_never_invoked(self):
        downloader = MockSource("b", Caps.DOWNLOAD)
        dispatcher = build_dispatcher([MockSource("a"), downloader])
        result = await dispatcher.search(SearchQuery("q"), sources=["b"])
        assert isinstance(result.failures[0].error, UnsupportedOperationError)
        assert downloader.call_count == 0

    async def test_single_string_id(self):
        dispatcher = build_dispatcher([MockSource("a"), MockSource("b")])
        result = await dispatcher.search(SearchQuery("q"), sources="b")  # type: ignore[arg-type]
        assert [o.source_id for o in result.outcomes] == ["b"]


# ============================================================
# Other operations
# ============================================================


class TestOperations:
    async def test_search_by_author(self):
        author_source = MockSource("s2", Caps.SEARCH | Caps.AUTHOR_SEARCH)
        plain = MockSource("plain")
        dispatcher = build_dispatcher([author_source, plain])
        result = await dispatcher.search_by_author(" Geoffrey Hinton ", max_results=5)
        assert result.operation == "search_by_author"
        assert author_source.calls == [("search_by_author", "Geoffrey Hinton")]
        assert plain.call_count == 0

    async def test_search_by_author_rejects_blank(self):
        with pytest.raises(InvalidParameterError):
            await build_dispatcher([]).search_by_author("  ")

    async def test_get_by_doi_best(self):
        sparse = make_paper("cr", "crossref", doi="10.1/x", citations=4)
        rich = make_paper("s2", "semantic", doi="10.1/x", citations=40, authors=["A B"])
        dispatcher = build_dispatcher([
            MockSource("crossref", Caps.DOI_LOOKUP, papers=[sparse]),
            MockSource("semantic", Caps.DOI_LOOKUP, papers=[rich]),
            MockSource("missing", Caps.DOI_LOOKUP, error=NotFoundError("DOI", "10.1/x")),
        ])
        result = await dispatcher.get_by_doi("10.1/x")
        best = result.best()
        assert best.paper_id == "cr"
        assert best.citations == 40
        assert best.authors == "A B"
        assert [f.source_id for f in result.failures] == ["missing"]

    async def test_get_by_doi_nothing_found(self):
        dispatcher = build_dispatcher([MockSource("a", Caps.DOI_LOOKUP, error=NotFoundError("DOI"))])
        assert (await dispatcher.get_by_doi("10.1/x")).best() is None

    async def test_get_by_doi_rejects_blank(self):
        with pytest.raises(InvalidParameterError):
            await build_dispatcher([]).get_by_doi("")

    @pytest.mark.parametrize("operation", ["get_citations", "get_references", "get_related"])
    async def test_citation_operations(self, operation):
        source = MockSource("s2", Caps.CITATIONS, papers=[make_paper("c1", "s2"), make_paper("c2", "s2")])
        dispatcher = build_dispatcher([source, MockSource("plain")])
        result = await getattr(dispatcher, operation)(CitationRequest("p1", max_results=5))
        assert result.operation == operation
        assert [p.paper_id for p in result.papers] == ["c1", "c2"]
        assert source.calls[0][0] == operation

    async def test_citation_request_from_string(self):
        source = MockSource("s2", Caps.CITATIONS)
        await build_dispatcher([source]).get_citations("DOI:10.1/x")
        assert source.calls[0][1] == CitationRequest("DOI:10.1/x")

    async def test_download(self, temp_dir):
        dispatcher = build_dispatcher([MockSource("arxiv", Caps.SEARCH | Caps.DOWNLOAD), MockSource("x")])
        assert [s.source_id for s in dispatcher.downloadable()] == ["arxiv"]
        result = await dispatcher.download(DownloadRequest("2301.00001", str(temp_dir)))
        assert result.operation == "download"
        assert result.values[0].success
        assert result.to_dict()["results"][0]["value"]["bytes"] == 1234

    async def test_read_without_capable_sources(self):
        result = await build_dispatcher([MockSource("a")]).read(ReadRequest("p", "/tmp"))
        assert result.outcomes == ()

    async def test_aclose(self):
        source = MockSource("a")
        await build_dispatcher([source]).aclose()
        assert source.closed


# ============================================================
# Caching
# ============================================================


class TestCaching:
    async def test_second_search_is_served_from_cache(self, clock):
        source = MockSource("a")
        dispatcher = build_dispatcher([source], cache=ResultCache(1024 * 1024, clock=clock))
        query = SearchQuery("transformers")

        first = await dispatcher.search(query)
        second = await dispatcher.search(SearchQuery("  Transformers "))

        assert source.call_count == 1
        assert not first.successes[0].cached
        assert second.successes[0].cached
        assert second.papers == first.papers

    async def test_cache_hit_skips_rate_limiter(self, clock):
        limiter = RateLimiter(default_rate=0, max_concurrent=1, timeout=0.05)
        source = MockSource("a")
        dispatcher = build_dispatcher(
            [source], cache=ResultCache(1024 * 1024, clock=clock), rate_limiter=limiter
        )
        await dispatcher.search(SearchQuery("q"))

        async with limiter.acquire("someone-else"):
            result = await dispatcher.search(SearchQuery("q"))
        assert result.successes[0].cached
        assert source.call_count == 1

    async def test_cache_expiry_refetches(self, clock):
        source = MockSource("a")
        dispatcher = build_dispatcher(
            [source], cache=ResultCache(1024 * 1024, clock=clock), search_ttl=60
        )
        await dispatcher.search(SearchQuery("q"))
        clock.advance(61)
        await dispatcher.search(SearchQuery("q"))
        assert source.call_count == 2

    async def test_cache_key_is_per_source(self):
        cache = RecordingCache()
        dispatcher = build_dispatcher([MockSource("a"), MockSource("b")], cache=cache)
        await dispatcher.search(SearchQuery("q"))
        assert len({key for key, _, _ in cache.puts}) == 2

    async def test_failures_are_not_cached(self):
        cache = RecordingCache()
        dispatcher = build_dispatcher([MockSource("a", error=NetworkError())], cache=cache)
        await dispatcher.search(SearchQuery("q"))
        assert cache.puts == []

    async def test_ttl_and_kind_per_operation(self):
        cache = RecordingCache()
        dispatcher = build_dispatcher(
            [MockSource("s2", Caps.SEARCH | Caps.CITATIONS)],
            cache=cache,
            search_ttl=100,
            citation_ttl=50,
        )
        await dispatcher.search(SearchQuery("q"))
        await dispatcher.get_citations("p1")
        assert [(ttl, kind) for _, ttl, kind in cache.puts] == [(100, "searches"), (50, "citations")]

    async def test_download_is_never_cached(self, temp_dir):
        cache = RecordingCache()
        dispatcher = build_dispatcher([MockSource("arxiv", Caps.DOWNLOAD)], cache=cache)
        await dispatcher.download(DownloadRequest("1", str(temp_dir)))
        await dispatcher.download(DownloadRequest("1", str(temp_dir)))
        assert cache.puts == []

    async def test_broken_cache_degrades_to_miss(self):
        source = MockSource("a")
        dispatcher = build_dispatcher([source], cache=BrokenCache())
        result = await dispatcher.search(SearchQuery("q"))
        assert result.failures == []
        assert len(result.papers) == 1

    async def test_unserializable_result_is_returned_uncached(self, clock):
        odd = PaperBuilder("a-1", "Odd", "https://a/1", "a").extra("fetched", datetime(2024, 5, 1)).build()
        a = MockSource("a", papers=[odd])
        b = MockSource("b")
        cache = ResultCache(10_000_000, clock=clock)
        dispatcher = build_dispatcher([a, b], cache=cache)

        result = await dispatcher.search(SearchQuery("q"))
        assert result.failures == []
        assert [p.paper_id for p in result.papers] == ["a-1", "b-1"]
        assert len(cache) == 1

        again = await dispatcher.search(SearchQuery("q"))
        assert a.call_count == 2
        assert b.call_count == 1
        assert len(again.papers) == 2

    async def test_corrupt_disk_entry_is_refetched(self, temp_dir, clock):
        source = MockSource("a")
        cache = ResultCache(1024 * 1024, temp_dir, clock=clock)
        dispatcher = build_dispatcher([source], cache=cache)
        await dispatcher.search(SearchQuery("q"))
        cache.clear()
        key = fingerprint("search", "a", SearchQuery("q").cache_fields())
        path = temp_dir / "searches" / f"{key}.json"
        path.write_text("garbage")

        result = await dispatcher.search(SearchQuery("q"))
        assert source.call_count == 2
        assert not result.successes[0].cached


# ============================================================
# Admission, deadlines, cancellation
# ============================================================


class TestAdmissionAndDeadlines:
    async def test_rate_limit_timeout_is_a_provider_failure(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=1, timeout=0.05)
        dispatcher = build_dispatcher([MockSource("a")], rate_limiter=limiter)
        async with limiter.acquire("blocker"):
            result = await dispatcher.search(SearchQuery("q"))
        assert isinstance(result.failures[0].error, RateLimitTimeoutError)

    async def test_global_ceiling(self):
        active = 0
        peak = 0

        class Counting(MockSource):
            async def search(self, query):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                try:
                    return await super().search(query)
                finally:
                    active -= 1

        limiter = RateLimiter(default_rate=0, max_concurrent=2, timeout=5.0)
        sources = [Counting(sid, delay=0.03) for sid in "abcde"]
        result = await build_dispatcher(sources, rate_limiter=limiter).search(SearchQuery("q"))
        assert peak == 2
        assert len(result.successes) == 5

    async def test_deadline_cancels_slow_provider(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=10)
        slow = MockSource("slow", delay=5)
        fast = MockSource("fast")
        dispatcher = build_dispatcher([slow, fast], rate_limiter=limiter)

        start = time.monotonic()
        result = await dispatcher.search(SearchQuery("q"), deadline=0.1)
        assert time.monotonic() - start < 1.0

        assert slow.cancelled
        assert result.outcome_for("fast").ok
        error = result.outcome_for("slow").error
        assert isinstance(error, DeadlineExceededError)
        assert error.deadline == 0.1
        assert limiter.global_limiter.in_use == 0

    async def test_default_deadline(self):
        dispatcher = build_dispatcher([MockSource("slow", delay=5)], default_deadline=0.05)
        result = await dispatcher.search(SearchQuery("q"))
        assert isinstance(result.failures[0].error, DeadlineExceededError)

    async def test_explicit_none_overrides_default_deadline(self):
        dispatcher = build_dispatcher([MockSource("a", delay=0.1)], default_deadline=0.01)
        result = await dispatcher.search(SearchQuery("q"), deadline=None)
        assert result.failures == []

    async def test_caller_cancellation_reaches_providers(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=10)
        sources = [MockSource("a", delay=5), MockSource("b", delay=5)]
        dispatcher = build_dispatcher(sources, rate_limiter=limiter)

        task = asyncio.create_task(dispatcher.search(SearchQuery("q")))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert all(s.cancelled for s in sources)
        assert limiter.global_limiter.in_use == 0


# ============================================================
# Circuit breaker
# ============================================================


class TestCircuitBreaker:
    async def test_breaker_opens_after_repeated_failures(self):
        flaky = MockSource("flaky", error=NetworkError("reset"))
        dispatcher = build_dispatcher([flaky], circuit_breaker_threshold=2)
        for _ in range(2):
            await dispatcher.search(SearchQuery("q"))
        result = await dispatcher.search(SearchQuery("q"))

        assert isinstance(result.failures[0].error, CircuitOpenError)
        assert flaky.call_count == 2
        assert dispatcher.breaker_for("flaky").state == "open"

    async def test_permanent_errors_keep_breaker_closed(self):
        missing = MockSource("m", error=NotFoundError("Paper"))
        dispatcher = build_dispatcher([missing], circuit_breaker_threshold=1)
        for _ in range(3):
            await dispatcher.search(SearchQuery("q"))
        assert missing.call_count == 3

    async def test_breakers_can_be_disabled(self):
        dispatcher = build_dispatcher([MockSource("a")], circuit_breaker_threshold=0)
        assert dispatcher.breaker_for("a") is None
