"""Writing stage: assemble the report context and hand it to a renderer."""

import asyncio
import re
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

from researcher.exceptions import WritingError
from researcher.logging import get_logger
from researcher.models import (
    EnrichedSource,
    EnrichmentStatus,
    KeyFinding,
    PipelineState,
    Plan,
    ReportContext,
    ResearchOptions,
    StageKind,
    utc_now,
)
from researcher.report import MarkdownReportRenderer, ReportRenderer
from researcher.stages.base import require
from researcher.stages.enrichment import SKIP_LOW_PRIORITY, SKIP_STAGE_DEGRADED

log = get_logger("researcher.stages.writer")

MAX_KEY_FINDINGS = 10
MAX_POINT_CHARS = 280
MAX_SLUG_CHARS = 50

_UNSAFE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fff]+")
_SENTENCE = re.compile(r"(.+?[.!?。！？])(\s|$)")


def sanitize_topic(topic: str) -> str:
    """Filesystem-safe slug; CJK characters are kept."""
    return _UNSAFE.sub("-", topic.lower()).strip("-")[:MAX_SLUG_CHARS].strip("-") or "report"


def _first_sentence(text: str) -> str:
    text = " ".join(text.split())
    match = _SENTENCE.match(text)
    point = match.group(1) if match else text
    return point[:MAX_POINT_CHARS]


def key_findings(sources: Sequence[EnrichedSource]) -> list[KeyFinding]:
    """Best enriched content first, then snippets of the remaining sources."""
    enriched = sorted(
        (s for s in sources if s.enrichment_status is EnrichmentStatus.SUCCESS and s.content_text),
        key=lambda s: s.quality.score if s.quality else 0.0,
        reverse=True,
    )
    used = {s.url for s in enriched}
    findings = [
        KeyFinding(point=_first_sentence(s.content_text or ""), url=s.url, published_at=s.published_at)
        for s in enriched
    ]
    findings += [
        KeyFinding(point=_first_sentence(s.snippet), url=s.url, published_at=s.published_at)
        for s in sources
        if s.url not in used and s.snippet.strip()
    ]
    return [finding for finding in findings if finding.point][:MAX_KEY_FINDINGS]


def limitations(sources: Sequence[EnrichedSource], options: ResearchOptions) -> list[str]:
    failed = sum(1 for s in sources if s.enrichment_status is EnrichmentStatus.FAILED)
    low_priority = sum(1 for s in sources if s.skip_reason == SKIP_LOW_PRIORITY)
    notes: list[str] = []
    if any(s.skip_reason == SKIP_STAGE_DEGRADED for s in sources):
        notes.append("Full-content enrichment was unavailable for this run; all sources are cited from search snippets")
    if failed:
        notes.append(f"{failed} source(s) could not be fetched or parsed")
    if low_priority:
        notes.append(f"{low_priority} lower-priority source(s) were not enriched and are cited from search snippets only")
    if options.since:
        notes.append(f"Sources published before {options.since.isoformat()} were excluded")
    notes.append("Findings come from publicly available web sources and have not been independently verified")
    return notes


class Writer:
    """Produces the report file for a run."""

    kind = StageKind.WRITE
    mandatory = True

    def __init__(
        self,
        report_dir: Path,
        renderer: ReportRenderer | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._report_dir = report_dir
        self._renderer = renderer or MarkdownReportRenderer()
        self._clock = clock

    async def run(self, state: PipelineState) -> PipelineState:
        path = await self.execute(
            state.topic,
            require(state.plan, "plan"),
            require(state.enriched_sources, "enriched_sources"),
            state.options,
        )
        return state.model_copy(update={"report_path": str(path)})

    def build_context(
        self,
        topic: str,
        plan: Plan,
        sources: Sequence[EnrichedSource],
        options: ResearchOptions,
    ) -> ReportContext:
        return ReportContext(
            topic=topic,
            generated_at=self._clock(),
            langs=list(options.langs),
            since=options.since,
            plan=plan,
            key_findings=key_findings(sources),
            sources=list(sources),
            limitations=limitations(sources, options),
        )

    def destination_for(self, topic: str, generated_at: datetime) -> Path:
        return self._report_dir / f"{generated_at.date().isoformat()}-{sanitize_topic(topic)}.md"

    async def execute(
        self,
        topic: str,
        plan: Plan,
        sources: Sequence[EnrichedSource],
        options: ResearchOptions,
    ) -> Path:
        context = self.build_context(topic, plan, sources, options)
        destination = self.destination_for(topic, context.generated_at)
        try:
            path = await asyncio.to_thread(self._renderer.render, context, destination)
        except OSError as e:
            log.error("writer.render.failed", destination=str(destination), error=str(e))
            raise WritingError(reason=str(e)) from e

        log.info("writer.report.written", path=str(path), findings=len(context.key_findings))
        return path
