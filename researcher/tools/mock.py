"""Mock-mode backend: deterministic synthetic responses for offline development.

Every payload carries ``mocked: True`` so synthetic data can never pass for
real results.
"""

import hashlib
import re
from datetime import UTC, datetime, timedelta
from typing import Any

from researcher.exceptions import ToolCallError
from researcher.tools import research_tools
from researcher.tools.registry import BRAVE_SEARCH, RESEARCH_TOOLS, SERPAPI, WEB_FETCH

MOCK_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)
MOCK_DOMAINS = ("arxiv.org", "github.com", "learn.microsoft.com", "medium.com", "cncf.io")
MOCK_RESULTS_PER_QUERY = 3


def _digest(*parts: str) -> int:
    return int(hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:8], 16)


def _slug(text: str) -> str:
    return re.sub(r"[^\w]+", "-", text.lower()).strip("-") or "topic"


class MockToolBackend:
    """Same input, same output; no network, no clock, no randomness."""

    def __init__(self, results_per_query: int = MOCK_RESULTS_PER_QUERY) -> None:
        self._results_per_query = results_per_query

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        if capability in (BRAVE_SEARCH, SERPAPI):
            payload = self._search(capability, params)
        elif capability == WEB_FETCH:
            payload = self._fetch(params)
        elif capability == RESEARCH_TOOLS and operation == "extract_readable":
            payload = research_tools.extract_readable(params.get("html", ""), params.get("url"))
        elif capability == RESEARCH_TOOLS and operation == "normalize":
            payload = research_tools.normalize(params.get("item") or {}, now=MOCK_EPOCH)
        elif capability == RESEARCH_TOOLS and operation == "quality_score":
            payload = research_tools.quality_score(params.get("item") or {}, now=MOCK_EPOCH)
        else:
            raise ToolCallError(capability, operation, "no mock response")
        return {**payload, "mocked": True}

    def _search(self, capability: str, params: dict[str, Any]) -> dict[str, Any]:
        query = str(params.get("query", ""))
        count = min(int(params.get("count", self._results_per_query)), self._results_per_query)
        slug = _slug(query)
        results = []
        for index in range(count):
            domain = MOCK_DOMAINS[(_digest(capability, query) + index) % len(MOCK_DOMAINS)]
            age_days = _digest(query, str(index)) % 365
            results.append(
                {
                    "title": f"{query} - guide{f' ({index + 1})' if index else ''}",
                    "url": f"https://{domain}/{slug}-{index + 1}",
                    "snippet": f"An in-depth look at {query}: approaches, practices and common pitfalls.",
                    "published_at": (MOCK_EPOCH - timedelta(days=age_days)).isoformat(),
                    "lang": params.get("lang"),
                }
            )
        return {"results": results}

    def _fetch(self, params: dict[str, Any]) -> dict[str, Any]:
        url = str(params.get("url", ""))
        page = url.rstrip("/").rsplit("/", 1)[-1] or url
        html = (
            f"<html><head><title>{page}</title>"
            f'<meta name="description" content="Synthetic page for {url}"></head>'
            f"<body><article><h1>{page}</h1>"
            f"<p>Synthetic content generated for {url}.</p>"
            f"<p>It stands in for the real page during offline development.</p>"
            f"</article></body></html>"
        )
        return {"url": url, "status_code": 200, "content_type": "text/html", "html": html}
