"""Test-mode backend: fixed recorded responses for repeatable runs without API keys."""

import copy
from collections.abc import Mapping
from typing import Any

from researcher.exceptions import ToolCallError
from researcher.tools.registry import BRAVE_SEARCH, RESEARCH_TOOLS, SERPAPI, WEB_FETCH

_RECORDED_HTML = """<html>
<head>
<title>Cloud Native Architecture Patterns</title>
<meta name="author" content="CNCF TAG App Delivery">
<meta name="description" content="How cloud native systems are structured around containers, service meshes and declarative APIs.">
</head>
<body>
<nav>Home | Projects | Blog</nav>
<article>
<h1>Cloud Native Architecture Patterns</h1>
<p>Cloud native architecture structures applications as loosely coupled services packaged in containers.</p>
<p>Declarative APIs and immutable infrastructure let platforms reconcile desired state continuously.</p>
<p>Service meshes move retries, timeouts and mutual TLS out of application code.</p>
</article>
<footer>Copyright</footer>
</body>
</html>"""

RECORDED_RESPONSES: Mapping[tuple[str, str], dict[str, Any]] = {
    (BRAVE_SEARCH, "web_search"): {
        "results": [
            {
                "title": "Cloud Native Architecture: current state and development",
                "url": "https://www.cncf.io/reports/cloud-native-architecture-state",
                "snippet": "Annual survey on cloud native architecture adoption, containers and Kubernetes in production.",
                "published_at": "2024-04-02T00:00:00+00:00",
                "lang": "en",
            },
            {
                "title": "A reference model for cloud native architecture",
                "url": "https://arxiv.org/abs/2401.01234",
                "snippet": "We propose a layered reference model for cloud native systems and evaluate it on three platforms.",
                "published_at": "2024-01-15T00:00:00+00:00",
                "lang": "en",
            },
            {
                "title": "Cloud native computing guidance",
                "url": "https://csrc.nist.gov/pubs/sp/800/204/final",
                "snippet": "Security strategies for microservices-based application systems in cloud native environments.",
                "published_at": "2023-08-01T00:00:00+00:00",
                "lang": "en",
            },
            {
                "title": "Sponsored: 10 cloud tools you need now",
                "url": "https://blog.vendor-example.io/cloud-tools-promo",
                "snippet": "Our partners' picks for cloud native architecture teams. Discount inside.",
                "published_at": "2024-06-10T00:00:00+00:00",
                "lang": "en",
            },
        ]
    },
    (SERPAPI, "search"): {"results": []},
    (WEB_FETCH, "fetch"): {
        "url": "https://www.cncf.io/reports/cloud-native-architecture-state",
        "status_code": 200,
        "content_type": "text/html; charset=utf-8",
        "html": _RECORDED_HTML,
    },
    (RESEARCH_TOOLS, "extract_readable"): {
        "title": "Cloud Native Architecture Patterns",
        "byline": "CNCF TAG App Delivery",
        "excerpt": "How cloud native systems are structured around containers, service meshes and declarative APIs.",
        "content_text": (
            "Cloud native architecture structures applications as loosely coupled services packaged in containers.\n"
            "Declarative APIs and immutable infrastructure let platforms reconcile desired state continuously.\n"
            "Service meshes move retries, timeouts and mutual TLS out of application code."
        ),
        "length": 282,
        "url": "https://www.cncf.io/reports/cloud-native-architecture-state",
    },
    (RESEARCH_TOOLS, "normalize"): {
        "id": "https://www.cncf.io/reports/cloud-native-architecture-state#Cloud Native Architecture Patterns",
        "url": "https://www.cncf.io/reports/cloud-native-architecture-state",
        "host": "cncf.io",
        "title": "Cloud Native Architecture Patterns",
        "author": "CNCF TAG App Delivery",
        "lang": "en",
        "published_at": "2024-04-02T00:00:00+00:00",
        "extracted_at": "2024-06-01T12:00:00+00:00",
        "content_text": "Cloud native architecture structures applications as loosely coupled services packaged in containers.",
        "keywords": [],
    },
    (RESEARCH_TOOLS, "quality_score"): {"score": 0.47, "labels": []},
}


class RecordedToolBackend:
    """Replays ``RECORDED_RESPONSES``; a missing recording is a failure, never a guess."""

    def __init__(self, recordings: Mapping[tuple[str, str], dict[str, Any]] = RECORDED_RESPONSES) -> None:
        self._recordings = recordings

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        recorded = self._recordings.get((capability, operation))
        if recorded is None:
            raise ToolCallError(capability, operation, "no recorded response")
        return {**copy.deepcopy(recorded), "recorded": True}
