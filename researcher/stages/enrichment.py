"""Enrichment stage: fetch, extract and quality-score the top-priority sources.

Only the top ``max_sources`` candidates by priority are fetched; the rest
come back skipped. Fetches are paced and run through a small worker pool, so
concurrency never exceeds the configured bound. A single source failing is
recorded on that source and never aborts the batch.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from pydantic import ValidationError

from researcher.exceptions import CapabilityUnavailableError, ToolCallError
from researcher.logging import get_logger
from researcher.models import (
    EnrichedSource,
    EnrichmentStatus,
    PipelineState,
    QualityAssessment,
    SourceCandidate,
    StageKind,
)
from researcher.stages.base import require
from researcher.tools.client import ToolClient
from researcher.tools.registry import RESEARCH_TOOLS, WEB_FETCH
from researcher.tools.research_tools import is_authoritative, is_marketing

log = get_logger("researcher.stages.enrichment")

AUTHORITY_BONUS = 0.2
MARKETING_PENALTY = 0.3
MAX_CONCURRENCY = 3

SKIP_LOW_PRIORITY = "low_priority"
SKIP_STAGE_DEGRADED = "enrichment_unavailable"

ProgressCallback = Callable[[int, int, str], Awaitable[None]]


def priority_score(source: SourceCandidate) -> float:
    """Relevance adjusted for authoritative hosts and marketing titles."""
    score = source.relevance_score
    if is_authoritative(source.url):
        score += AUTHORITY_BONUS
    if is_marketing(source.title):
        score -= MARKETING_PENALTY
    return score


def prioritize(sources: Sequence[SourceCandidate]) -> list[int]:
    """Indices of ``sources`` by descending priority; ties keep input order."""
    return sorted(range(len(sources)), key=lambda i: priority_score(sources[i]), reverse=True)


def skipped(source: SourceCandidate, reason: str) -> EnrichedSource:
    return EnrichedSource.from_candidate(source, enrichment_status=EnrichmentStatus.SKIPPED, skip_reason=reason)


class _Pacer:
    """Keeps ``interval_s`` between a source's completion and the next fetch.

    Starts across workers are also spaced by ``interval_s``.
    """

    def __init__(self, interval_s: float) -> None:
        self._interval_s = interval_s
        self._lock = asyncio.Lock()
        self._not_before: float | None = None

    async def wait(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            if self._not_before is not None:
                remaining = self._not_before - loop.time()
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._not_before = loop.time() + self._interval_s

    def finished(self) -> None:
        next_start = asyncio.get_running_loop().time() + self._interval_s
        self._not_before = max(self._not_before or next_start, next_start)


class Enricher:
    """Degradable stage: on failure the run continues with every source skipped."""

    kind = StageKind.ENRICH
    mandatory = False

    def __init__(
        self,
        client: ToolClient,
        *,
        max_sources: int = 5,
        concurrency: int = 1,
        delay_s: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._client = client
        self._max_sources = max(0, max_sources)
        self._concurrency = max(1, min(concurrency, MAX_CONCURRENCY))
        self._delay_s = max(0.0, delay_s)
        self._on_progress = on_progress

    async def run(self, state: PipelineState) -> PipelineState:
        enriched = await self.enrich(require(state.sources, "sources"))
        return state.model_copy(update={"enriched_sources": enriched})

    def fallback(self, state: PipelineState) -> PipelineState:
        sources = state.sources or []
        return state.model_copy(update={"enriched_sources": [skipped(s, SKIP_STAGE_DEGRADED) for s in sources]})

    async def enrich(self, sources: Sequence[SourceCandidate]) -> list[EnrichedSource]:
        """One EnrichedSource per input, in input order."""
        for capability in (WEB_FETCH, RESEARCH_TOOLS):
            if not self._client.is_available(capability):
                raise CapabilityUnavailableError(capability, "not registered or not configured")

        order = prioritize(sources)
        selected = order[: self._max_sources]
        # Workers overwrite the selected slots.
        results = [skipped(source, SKIP_LOW_PRIORITY) for source in sources]

        log.info("enrichment.started", total=len(sources), selected=len(selected), concurrency=self._concurrency)

        pending = deque(selected)
        pacer = _Pacer(self._delay_s)
        completed = 0

        async def _worker() -> None:
            nonlocal completed
            while pending:
                index = pending.popleft()
                await pacer.wait()
                results[index] = await self._enrich_one(sources[index])
                pacer.finished()
                completed += 1
                if self._on_progress is not None:
                    await self._on_progress(completed, len(selected), sources[index].url)

        async with asyncio.TaskGroup() as tg:
            for _ in range(min(self._concurrency, len(selected))):
                tg.create_task(_worker())

        log.info(
            "enrichment.completed",
            success=sum(1 for e in results if e.enrichment_status is EnrichmentStatus.SUCCESS),
            failed=sum(1 for e in results if e.enrichment_status is EnrichmentStatus.FAILED),
            skipped=sum(1 for e in results if e.enrichment_status is EnrichmentStatus.SKIPPED),
        )
        return results

    async def _enrich_one(self, source: SourceCandidate) -> EnrichedSource:
        try:
            fetched = (await self._client.call(WEB_FETCH, "fetch", {"url": source.url})).unwrap()
            extracted = (
                await self._client.call(
                    RESEARCH_TOOLS,
                    "extract_readable",
                    {"html": fetched.get("html") or "", "url": source.url},
                )
            ).unwrap()
            item: dict[str, Any] = {
                "url": source.url,
                "title": extracted.get("title") or source.title,
                "byline": extracted.get("byline") or "",
                "lang": source.lang,
                "published_at": source.published_at.isoformat() if source.published_at else None,
                "content_text": extracted.get("content_text") or "",
            }
            normalized = (await self._client.call(RESEARCH_TOOLS, "normalize", {"item": item})).unwrap()
            scored = (await self._client.call(RESEARCH_TOOLS, "quality_score", {"item": normalized})).unwrap()
            quality = QualityAssessment.model_validate(scored)
        except (ToolCallError, ValidationError) as e:
            log.warning("enrichment.source.failed", url=source.url, error=str(e))
            return EnrichedSource.from_candidate(source, enrichment_status=EnrichmentStatus.FAILED, error=str(e))

        log.debug("enrichment.source.succeeded", url=source.url, quality=quality.score)
        return EnrichedSource.from_candidate(
            source,
            enrichment_status=EnrichmentStatus.SUCCESS,
            content_text=normalized.get("content_text") or item["content_text"],
            quality=quality,
        )
