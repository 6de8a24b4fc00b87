"""Tool invocation client and its execution-mode backends."""

from researcher.tools.client import ToolBackend, ToolClient, create_tool_client
from researcher.tools.mock import MockToolBackend
from researcher.tools.real import RealToolBackend
from researcher.tools.recordings import RECORDED_RESPONSES, RecordedToolBackend
from researcher.tools.registry import (
    BRAVE_SEARCH,
    DEFAULT_REGISTRY,
    RESEARCH_TOOLS,
    SERPAPI,
    WEB_FETCH,
    CapabilitySpec,
)

__all__ = [
    # Client
    "ToolBackend",
    "ToolClient",
    "create_tool_client",
    # Backends
    "RealToolBackend",
    "MockToolBackend",
    "RecordedToolBackend",
    "RECORDED_RESPONSES",
    # Registry
    "CapabilitySpec",
    "DEFAULT_REGISTRY",
    "BRAVE_SEARCH",
    "SERPAPI",
    "WEB_FETCH",
    "RESEARCH_TOOLS",
]
