"""Tests for the enrichment stage."""

import asyncio
from types import MappingProxyType
from typing import Any

import pytest

from researcher.exceptions import CapabilityUnavailableError
from researcher.models import EnrichmentStatus, PipelineState, ToolMode
from researcher.stages.enrichment import (
    SKIP_LOW_PRIORITY,
    SKIP_STAGE_DEGRADED,
    Enricher,
    prioritize,
    priority_score,
)
from researcher.tools import DEFAULT_REGISTRY, RESEARCH_TOOLS, WEB_FETCH, MockToolBackend, ToolClient

_PAGE = "<html><body><article><p>Body of the page. More text.</p></article></body></html>"


def _content_script(fetch: Any = None) -> dict:
    return {
        (WEB_FETCH, "fetch"): fetch or (lambda params: {"url": params["url"], "html": _PAGE}),
        (RESEARCH_TOOLS, "extract_readable"): lambda params: {
            "title": "Page",
            "content_text": f"Content of {params['url']}.",
        },
        (RESEARCH_TOOLS, "normalize"): lambda params: dict(params["item"]),
        (RESEARCH_TOOLS, "quality_score"): {"score": 0.6, "labels": []},
    }


class _TrackingBackend:
    """Fetches take a moment; records how many are in flight and when each starts and ends."""

    def __init__(self, fetch_delay_s: float = 0.02) -> None:
        self.fetch_delay_s = fetch_delay_s
        self.in_flight = 0
        self.peak = 0
        self.starts: list[float] = []
        self.ends: list[float] = []

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        if operation != "fetch":
            return await MockToolBackend().invoke(capability, operation, params)
        self.starts.append(asyncio.get_running_loop().time())
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.fetch_delay_s)
            return {"url": params["url"], "html": _PAGE}
        finally:
            self.in_flight -= 1
            self.ends.append(asyncio.get_running_loop().time())


class TestPriority:
    """Tests for source prioritisation."""

    def test__authoritative_host__gets_bonus(self, make_candidate) -> None:
        source = make_candidate("https://arxiv.org/abs/1", relevance=0.5)
        assert priority_score(source) == pytest.approx(0.7)

    def test__marketing_title__gets_penalty(self, make_candidate) -> None:
        source = make_candidate("https://blog.io/promo", relevance=0.5, title="Sponsored: best tools")
        assert priority_score(source) == pytest.approx(0.2)

    def test__prioritize__orders_indices_stably(self, make_candidate) -> None:
        sources = [
            make_candidate("https://a.io", relevance=0.5),
            make_candidate("https://arxiv.org/abs/2", relevance=0.4),
            make_candidate("https://b.io", relevance=0.5),
            make_candidate("https://c.io", relevance=0.95, title="Buy now"),
        ]
        assert prioritize(sources) == [3, 1, 0, 2]


class TestEnrich:
    """Tests for Enricher.enrich."""

    @pytest.mark.asyncio
    async def test__cap__enriches_top_sources_and_skips_rest(self, make_client, make_candidate) -> None:
        client, backend = make_client(_content_script())
        sources = [make_candidate(f"https://a.io/{i}", relevance=i / 10) for i in range(7)]

        enriched = await Enricher(client, max_sources=5, delay_s=0).enrich(sources)

        assert [e.url for e in enriched] == [s.url for s in sources]
        statuses = [e.enrichment_status for e in enriched]
        assert statuses[:2] == [EnrichmentStatus.SKIPPED, EnrichmentStatus.SKIPPED]
        assert statuses[2:] == [EnrichmentStatus.SUCCESS] * 5
        assert {e.skip_reason for e in enriched[:2]} == {SKIP_LOW_PRIORITY}
        assert len(backend.calls_to(WEB_FETCH)) == 5

    @pytest.mark.asyncio
    async def test__success__carries_content_and_quality(self, make_client, make_candidate) -> None:
        client, _ = make_client(_content_script())

        [source] = await Enricher(client, delay_s=0).enrich([make_candidate("https://a.io/1")])

        assert source.enrichment_status is EnrichmentStatus.SUCCESS
        assert source.content_text == "Content of https://a.io/1."
        assert source.quality is not None and source.quality.score == pytest.approx(0.6)
        assert source.error is None

    @pytest.mark.asyncio
    async def test__fetch_failure__is_local_to_that_source(self, make_client, make_candidate) -> None:
        def fetch(params: dict[str, Any]) -> dict[str, Any]:
            if params["url"].endswith("/bad"):
                raise ConnectionError("connection refused")
            return {"url": params["url"], "html": _PAGE}

        client, _ = make_client(_content_script(fetch))
        sources = [make_candidate("https://a.io/good", relevance=0.9), make_candidate("https://a.io/bad", relevance=0.8)]

        enriched = await Enricher(client, delay_s=0).enrich(sources)

        assert enriched[0].enrichment_status is EnrichmentStatus.SUCCESS
        assert enriched[1].enrichment_status is EnrichmentStatus.FAILED
        assert "connection refused" in (enriched[1].error or "")
        assert enriched[1].content_text is None

    @pytest.mark.asyncio
    async def test__invalid_quality_payload__fails_the_source(self, make_client, make_candidate) -> None:
        script = _content_script()
        script[(RESEARCH_TOOLS, "quality_score")] = {"score": 7, "labels": []}
        client, _ = make_client(script)

        [source] = await Enricher(client, delay_s=0).enrich([make_candidate("https://a.io/1")])

        assert source.enrichment_status is EnrichmentStatus.FAILED

    @pytest.mark.asyncio
    async def test__missing_fetch_capability__raises(self, make_client, make_candidate) -> None:
        registry = MappingProxyType({k: v for k, v in DEFAULT_REGISTRY.items() if k != WEB_FETCH})
        client, backend = make_client(_content_script(), registry=registry)

        with pytest.raises(CapabilityUnavailableError, match="web-fetch"):
            await Enricher(client, delay_s=0).enrich([make_candidate("https://a.io/1")])
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test__zero_cap__skips_everything(self, make_client, make_candidate) -> None:
        client, backend = make_client(_content_script())

        enriched = await Enricher(client, max_sources=0).enrich([make_candidate("https://a.io/1")])

        assert enriched[0].skip_reason == SKIP_LOW_PRIORITY
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test__concurrency__never_exceeds_bound(self, make_candidate) -> None:
        backend = _TrackingBackend()
        client = ToolClient(ToolMode.TEST, backend)
        sources = [make_candidate(f"https://a.io/{i}") for i in range(6)]

        enriched = await Enricher(client, max_sources=6, concurrency=2, delay_s=0).enrich(sources)

        assert backend.peak == 2
        assert all(e.enrichment_status is EnrichmentStatus.SUCCESS for e in enriched)

    @pytest.mark.asyncio
    async def test__delay__spaces_out_fetch_starts(self, make_candidate) -> None:
        backend = _TrackingBackend(fetch_delay_s=0)
        client = ToolClient(ToolMode.TEST, backend)
        sources = [make_candidate(f"https://a.io/{i}") for i in range(3)]

        await Enricher(client, delay_s=0.05).enrich(sources)

        gaps = [later - earlier for earlier, later in zip(backend.starts, backend.starts[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.04 for gap in gaps)

    @pytest.mark.asyncio
    async def test__delay__follows_slow_fetches(self, make_candidate) -> None:
        backend = _TrackingBackend(fetch_delay_s=0.1)
        client = ToolClient(ToolMode.TEST, backend)
        sources = [make_candidate(f"https://a.io/{i}") for i in range(3)]

        await Enricher(client, delay_s=0.05).enrich(sources)

        idle = [start - end for end, start in zip(backend.ends, backend.starts[1:])]
        assert len(idle) == 2
        assert all(gap >= 0.04 for gap in idle)

    @pytest.mark.asyncio
    async def test__progress__is_reported_per_source(self, make_client, make_candidate) -> None:
        client, _ = make_client(_content_script())
        seen: list[tuple[int, int, str]] = []

        async def on_progress(completed: int, total: int, url: str) -> None:
            seen.append((completed, total, url))

        sources = [make_candidate("https://a.io/1", relevance=0.9), make_candidate("https://a.io/2", relevance=0.1)]
        await Enricher(client, delay_s=0, on_progress=on_progress).enrich(sources)

        assert seen == [(1, 2, "https://a.io/1"), (2, 2, "https://a.io/2")]


class TestRunAndFallback:
    """Tests for the stage entry points."""

    @pytest.mark.asyncio
    async def test__run__sets_enriched_sources(self, make_client, make_candidate) -> None:
        client, _ = make_client(_content_script())
        state = PipelineState(topic="t", sources=[make_candidate("https://a.io/1")])

        new_state = await Enricher(client, delay_s=0).run(state)

        assert new_state.enriched_sources is not None
        assert len(new_state.enriched_sources) == 1

    def test__fallback__skips_every_source(self, make_client, make_candidate) -> None:
        client, _ = make_client({})
        state = PipelineState(topic="t", sources=[make_candidate("https://a.io/1"), make_candidate("https://a.io/2")])

        new_state = Enricher(client).fallback(state)

        assert [e.enrichment_status for e in new_state.enriched_sources or []] == [EnrichmentStatus.SKIPPED] * 2
        assert {e.skip_reason for e in new_state.enriched_sources or []} == {SKIP_STAGE_DEGRADED}
