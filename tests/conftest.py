"""Shared fixtures: fast settings and a scripted tool backend."""

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from researcher.config import Settings
from researcher.models import SourceCandidate, ToolMode
from researcher.tools.client import ToolClient
from researcher.tools.registry import DEFAULT_REGISTRY, CapabilitySpec

Response = dict[str, Any] | Exception | Callable[[dict[str, Any]], dict[str, Any]]


class ScriptedBackend:
    """Answers each (capability, operation) from a script and records every call.

    A script entry is a payload, an exception to raise, or a callable taking
    the params. A list entry is consumed one item per call, the last repeating.
    Capabilities in ``unconfigured`` report as missing their credentials.
    """

    def __init__(
        self,
        script: Mapping[tuple[str, str], Response | list[Response]],
        unconfigured: frozenset[str] = frozenset(),
    ) -> None:
        self.script = dict(script)
        self.unconfigured = unconfigured
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def is_configured(self, capability: str) -> bool:
        return capability not in self.unconfigured

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((capability, operation, params))
        entry = self.script.get((capability, operation))
        if entry is None:
            raise RuntimeError(f"unscripted call {capability}.{operation}")
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(params)
        return dict(entry)

    def calls_to(self, capability: str, operation: str | None = None) -> list[dict[str, Any]]:
        return [p for c, o, p in self.calls if c == capability and (operation is None or o == operation)]


def _make_client(
    script: Mapping[tuple[str, str], Response | list[Response]],
    *,
    registry: Mapping[str, CapabilitySpec] = DEFAULT_REGISTRY,
    unconfigured: frozenset[str] = frozenset(),
    timeout_s: float = 5.0,
) -> tuple[ToolClient, ScriptedBackend]:
    backend = ScriptedBackend(script, unconfigured)
    return ToolClient(ToolMode.TEST, backend, registry=registry, timeout_s=timeout_s), backend


def _make_candidate(url: str, relevance: float = 0.5, title: str = "A title", **fields: Any) -> SourceCandidate:
    return SourceCandidate(
        url=url,
        title=title,
        snippet=fields.pop("snippet", "A snippet."),
        provider=fields.pop("provider", "brave-search"),
        relevance_score=relevance,
        **fields,
    )


@pytest.fixture
def make_client() -> Callable[..., tuple[ToolClient, ScriptedBackend]]:
    """Factory for a test-mode ToolClient over a ScriptedBackend."""
    return _make_client


@pytest.fixture
def make_candidate() -> Callable[..., SourceCandidate]:
    return _make_candidate


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="development",
        report_dir=tmp_path / "reports",
        enrich_delay_s=0.0,
        retry_base_delay_s=0.0,
        tool_timeout_s=5.0,
    )
