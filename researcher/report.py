"""Report renderers: turn a ReportContext into a file on disk."""

from pathlib import Path
from typing import Protocol

from researcher.models import EnrichedSource, EnrichmentStatus, ReportContext


class ReportRenderer(Protocol):
    """Writes ``context`` to ``destination`` and returns the path actually written."""

    def render(self, context: ReportContext, destination: Path) -> Path: ...


def _format_date(source: EnrichedSource) -> str:
    return source.published_at.date().isoformat() if source.published_at else "undated"


def _source_line(index: int, source: EnrichedSource) -> str:
    title = source.title or source.url
    line = f"{index}. [{title}]({source.url}) - {source.provider}, {_format_date(source)}"
    if source.enrichment_status is EnrichmentStatus.SUCCESS and source.quality is not None:
        labels = f", {', '.join(source.quality.labels)}" if source.quality.labels else ""
        return f"{line} (quality {source.quality.score:.2f}{labels})"
    if source.enrichment_status is EnrichmentStatus.FAILED:
        return f"{line} (not retrieved: {source.error})"
    return f"{line} (snippet only)"


def render_markdown(context: ReportContext) -> str:
    lines = [
        f"# Research report: {context.topic}",
        "",
        f"- Generated: {context.generated_at.isoformat(timespec='seconds')}",
        f"- Languages: {', '.join(context.langs)}",
        f"- Sources published since: {context.since.isoformat() if context.since else 'any date'}",
        "",
        "## Key findings",
        "",
    ]
    if context.key_findings:
        for index, finding in enumerate(context.key_findings, start=1):
            when = f", {finding.published_at.date().isoformat()}" if finding.published_at else ""
            lines.append(f"{index}. {finding.point} ([source]({finding.url}){when})")
    else:
        lines.append("No findings could be extracted from the collected sources.")

    if context.plan.subtopics:
        lines += ["", "## Subtopics", ""]
        lines += [f"- {subtopic}" for subtopic in context.plan.subtopics]

    lines += ["", "## Sources", ""]
    lines += [_source_line(index, source) for index, source in enumerate(context.sources, start=1)]

    lines += ["", "## Limitations", ""]
    lines += [f"- {limitation}" for limitation in context.limitations]

    lines += ["", "## Method", "", "Search queries:", ""]
    lines += [f"- {query}" for query in context.plan.queries]
    if context.plan.checkpoints:
        lines += ["", f"Checkpoints: {', '.join(context.plan.checkpoints)}"]
    return "\n".join(lines) + "\n"


class MarkdownReportRenderer:
    """Default renderer: a single Markdown file, replaced atomically."""

    def render(self, context: ReportContext, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = destination.with_name(f"{destination.name}.tmp")
        try:
            tmp.write_text(render_markdown(context), encoding="utf-8")
            tmp.replace(destination)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        return destination
