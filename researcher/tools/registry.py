"""Static registry of the capabilities the pipeline may call."""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

BRAVE_SEARCH = "brave-search"
SERPAPI = "serpapi"
WEB_FETCH = "web-fetch"
RESEARCH_TOOLS = "research-tools"


@dataclass(frozen=True)
class CapabilitySpec:
    """A registered capability and the operations it exposes."""

    name: str
    operations: frozenset[str]
    description: str = ""
    credential_env: str | None = None


DEFAULT_REGISTRY: Mapping[str, CapabilitySpec] = MappingProxyType(
    {
        BRAVE_SEARCH: CapabilitySpec(
            BRAVE_SEARCH,
            frozenset({"web_search"}),
            "Brave Search web results",
            credential_env="BRAVE_API_KEY",
        ),
        SERPAPI: CapabilitySpec(
            SERPAPI,
            frozenset({"search"}),
            "Google results through SerpAPI",
            credential_env="SERPAPI_API_KEY",
        ),
        WEB_FETCH: CapabilitySpec(WEB_FETCH, frozenset({"fetch"}), "Raw page download over HTTP"),
        RESEARCH_TOOLS: CapabilitySpec(
            RESEARCH_TOOLS,
            frozenset({"extract_readable", "normalize", "quality_score"}),
            "Readable-text extraction, normalization and quality scoring",
        ),
    }
)
