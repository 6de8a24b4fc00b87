"""Search stage: query every plan query against the provider chain, dedupe and rank."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from researcher.exceptions import CapabilityUnavailableError, NoSearchProviderAvailableError, SearchError
from researcher.logging import get_logger
from researcher.models import (
    PipelineState,
    Plan,
    ResearchOptions,
    SearchHit,
    SourceCandidate,
    StageKind,
)
from researcher.relevance import calculate_relevance
from researcher.stages.base import require
from researcher.tools.client import ToolClient
from researcher.tools.registry import BRAVE_SEARCH, SERPAPI
from researcher.tools.research_tools import detect_lang

log = get_logger("researcher.stages.searcher")

RESULTS_PER_DEPTH = 5


@dataclass(frozen=True)
class SearchProvider:
    """A search capability and the operation that runs a query on it."""

    capability: str
    operation: str


# Tried in order for each query; the first non-empty answer wins.
DEFAULT_SEARCH_PROVIDERS = (
    SearchProvider(BRAVE_SEARCH, "web_search"),
    SearchProvider(SERPAPI, "search"),
)


def deduplicate(candidates: Sequence[SourceCandidate]) -> list[SourceCandidate]:
    """First occurrence of each url wins."""
    unique: dict[str, SourceCandidate] = {}
    for candidate in candidates:
        unique.setdefault(candidate.url, candidate)
    return list(unique.values())


def rank(candidates: Sequence[SourceCandidate]) -> list[SourceCandidate]:
    """Descending relevance; equal scores keep their discovery order."""
    return sorted(candidates, key=lambda c: c.relevance_score, reverse=True)


class Searcher:
    """Turns a Plan into a deduplicated, relevance-ranked candidate list."""

    kind = StageKind.SEARCH
    mandatory = True

    def __init__(
        self,
        client: ToolClient,
        providers: Sequence[SearchProvider] = DEFAULT_SEARCH_PROVIDERS,
    ) -> None:
        self._client = client
        self._providers = tuple(providers)

    async def run(self, state: PipelineState) -> PipelineState:
        sources = await self.execute(require(state.plan, "plan"), state.options)
        return state.model_copy(update={"sources": sources})

    async def execute(self, plan: Plan, options: ResearchOptions) -> list[SourceCandidate]:
        if not plan.queries:
            raise SearchError("plan has no queries")

        providers = [p for p in self._providers if self._client.is_available(p.capability)]
        if not providers:
            names = ", ".join(p.capability for p in self._providers)
            raise CapabilityUnavailableError(names, "no search provider is registered and configured")
        skipped = [p.capability for p in self._providers if p not in providers]
        if skipped:
            log.info("searcher.providers.skipped", providers=skipped)

        errors: list[str] = []
        answered = 0
        collected: list[SourceCandidate] = []
        for query in plan.queries:
            provider, hits = await self._search_query(query, providers, options, errors)
            if provider is None:
                continue
            answered += 1
            collected.extend(self._to_candidates(hits, provider, query, options))

        if not answered:
            raise NoSearchProviderAvailableError([p.capability for p in self._providers], errors)
        if not collected:
            raise SearchError(f"all results were filtered out (since={options.since}, langs={options.langs})")

        ranked = rank(deduplicate(collected))
        log.info(
            "searcher.search.completed",
            query_count=len(plan.queries),
            answered=answered,
            collected=len(collected),
            unique=len(ranked),
        )
        return ranked

    async def _search_query(
        self,
        query: str,
        providers: Sequence[SearchProvider],
        options: ResearchOptions,
        errors: list[str],
    ) -> tuple[SearchProvider | None, list[SearchHit]]:
        params: dict[str, Any] = {
            "query": query,
            "count": options.depth * RESULTS_PER_DEPTH,
            "lang": detect_lang(query),
        }
        for provider in providers:
            result = await self._client.call(provider.capability, provider.operation, params)
            if not result.success:
                log.warning("searcher.provider.failed", provider=provider.capability, query=query, error=result.error)
                errors.append(f"{provider.capability}: {result.error}")
                continue

            hits = self._parse_hits((result.data or {}).get("results") or [], provider)
            if not hits:
                log.info("searcher.provider.empty", provider=provider.capability, query=query)
                errors.append(f"{provider.capability}: no results for '{query}'")
                continue
            return provider, hits

        return None, []

    def _parse_hits(self, raw_hits: list[Any], provider: SearchProvider) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for raw in raw_hits:
            try:
                hits.append(SearchHit.model_validate(raw))
            except ValidationError as e:
                log.debug("searcher.hit.skipped", provider=provider.capability, error=str(e))
        return hits

    def _to_candidates(
        self,
        hits: list[SearchHit],
        provider: SearchProvider,
        query: str,
        options: ResearchOptions,
    ) -> list[SourceCandidate]:
        candidates: list[SourceCandidate] = []
        for hit in hits:
            if options.since and hit.published_at and hit.published_at.date() < options.since:
                continue
            lang = (hit.lang or detect_lang(f"{hit.title} {hit.snippet}")).split("-")[0].lower()
            if lang not in options.langs:
                continue
            candidates.append(
                SourceCandidate(
                    url=hit.url,
                    title=hit.title,
                    snippet=hit.snippet,
                    published_at=hit.published_at,
                    provider=provider.capability,
                    relevance_score=calculate_relevance(hit, query),
                    lang=lang,
                    query=query,
                )
            )
        return candidates
