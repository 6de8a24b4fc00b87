"""Real-mode backend: live search APIs, HTTP fetches and in-process content tools."""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from bs4 import BeautifulSoup
from pydantic import SecretStr

from researcher.config import Settings
from researcher.exceptions import ToolCallError
from researcher.logging import get_logger
from researcher.tools import research_tools
from researcher.tools.registry import BRAVE_SEARCH, DEFAULT_REGISTRY, RESEARCH_TOOLS, SERPAPI, WEB_FETCH

log = get_logger("researcher.tools.real")

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
SERPAPI_URL = "https://serpapi.com/search.json"
USER_AGENT = "Mozilla/5.0 (compatible; ResearchBot/1.0)"
MAX_RESULTS_PER_QUERY = 20

_SIGNUP_URLS = {
    BRAVE_SEARCH: "https://brave.com/search/api/",
    SERPAPI: "https://serpapi.com/",
}

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _plain_text(fragment: str) -> str:
    return BeautifulSoup(fragment or "", "html.parser").get_text(" ", strip=True)


class RealToolBackend:
    """Delegates to the actual external services; never fabricates data.

    Missing credentials fail the call with a configuration hint instead of
    falling back to synthetic results.
    """

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.tool_timeout_s,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self._owns_http = http_client is None
        self._handlers: dict[tuple[str, str], Handler] = {
            (BRAVE_SEARCH, "web_search"): self._brave_search,
            (SERPAPI, "search"): self._serpapi_search,
            (WEB_FETCH, "fetch"): self._fetch,
            (RESEARCH_TOOLS, "extract_readable"): self._extract_readable,
            (RESEARCH_TOOLS, "normalize"): self._normalize,
            (RESEARCH_TOOLS, "quality_score"): self._quality_score,
        }

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get((capability, operation))
        if handler is None:
            raise ToolCallError(capability, operation, "no real integration for this operation")
        return await handler(params)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _secret_for(self, capability: str) -> SecretStr | None:
        return {BRAVE_SEARCH: self._settings.brave_api_key, SERPAPI: self._settings.serpapi_api_key}.get(capability)

    def is_configured(self, capability: str) -> bool:
        spec = DEFAULT_REGISTRY.get(capability)
        if spec is None or spec.credential_env is None:
            return True
        secret = self._secret_for(capability)
        return secret is not None and bool(secret.get_secret_value().strip())

    def _credential(self, capability: str, operation: str) -> str:
        secret = self._secret_for(capability)
        if secret is None or not self.is_configured(capability):
            env = DEFAULT_REGISTRY[capability].credential_env
            hint = f"Set {env} (get a key at {_SIGNUP_URLS[capability]})"
            raise ToolCallError(capability, operation, f"not configured. {hint}")
        return secret.get_secret_value()

    async def _get_json(self, capability: str, operation: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.get(url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ToolCallError(capability, operation, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ToolCallError(capability, operation, f"request error: {e}") from e

    # --- search ---

    async def _brave_search(self, params: dict[str, Any]) -> dict[str, Any]:
        token = self._credential(BRAVE_SEARCH, "web_search")
        query_params: dict[str, Any] = {
            "q": params["query"],
            "count": min(int(params.get("count", 10)), MAX_RESULTS_PER_QUERY),
        }
        if params.get("lang"):
            query_params["search_lang"] = params["lang"]

        data = await self._get_json(
            BRAVE_SEARCH,
            "web_search",
            BRAVE_SEARCH_URL,
            params=query_params,
            headers={"Accept": "application/json", "X-Subscription-Token": token},
        )
        results = [
            {
                "title": _plain_text(item.get("title", "")),
                "url": item.get("url", ""),
                "snippet": _plain_text(item.get("description", "")),
                "published_at": item.get("page_age"),
                "lang": item.get("language"),
            }
            for item in data.get("web", {}).get("results", [])
            if item.get("url")
        ]
        return {"results": results}

    async def _serpapi_search(self, params: dict[str, Any]) -> dict[str, Any]:
        api_key = self._credential(SERPAPI, "search")
        query_params: dict[str, Any] = {
            "engine": "google",
            "q": params["query"],
            "num": min(int(params.get("count", 10)), MAX_RESULTS_PER_QUERY),
            "api_key": api_key,
        }
        if params.get("lang"):
            query_params["hl"] = "zh-cn" if params["lang"] == "zh" else params["lang"]

        data = await self._get_json(SERPAPI, "search", SERPAPI_URL, params=query_params)
        if data.get("error"):
            raise ToolCallError(SERPAPI, "search", str(data["error"]))
        results = [
            {
                "title": item.get("title", ""),
                "url": item.get("link", ""),
                "snippet": item.get("snippet", ""),
                "lang": params.get("lang"),
            }
            for item in data.get("organic_results", [])
            if item.get("link")
        ]
        return {"results": results}

    # --- content ---

    async def _fetch(self, params: dict[str, Any]) -> dict[str, Any]:
        url = params["url"]
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ToolCallError(WEB_FETCH, "fetch", f"HTTP {e.response.status_code} for {url}") from e
        except httpx.HTTPError as e:
            raise ToolCallError(WEB_FETCH, "fetch", f"request error for {url}: {e}") from e

        log.debug("tools.fetch.completed", url=url, status_code=response.status_code, bytes=len(response.content))
        return {
            "url": str(response.url),
            "status_code": response.status_code,
            "content_type": response.headers.get("content-type", ""),
            "html": response.text,
        }

    async def _extract_readable(self, params: dict[str, Any]) -> dict[str, Any]:
        return research_tools.extract_readable(params.get("html", ""), params.get("url"))

    async def _normalize(self, params: dict[str, Any]) -> dict[str, Any]:
        return research_tools.normalize(params.get("item") or {})

    async def _quality_score(self, params: dict[str, Any]) -> dict[str, Any]:
        return research_tools.quality_score(params.get("item") or {})
