"""Tests for the writing stage and the Markdown renderer."""

from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from researcher.exceptions import WritingError
from researcher.models import (
    EnrichedSource,
    EnrichmentStatus,
    PipelineState,
    Plan,
    QualityAssessment,
    ReportContext,
    ResearchOptions,
)
from researcher.stages.enrichment import SKIP_LOW_PRIORITY, SKIP_STAGE_DEGRADED
from researcher.stages.writer import Writer, key_findings, limitations, sanitize_topic

FROZEN = datetime(2024, 6, 1, 9, 30, tzinfo=UTC)

_PLAN = Plan(
    topic="cloud native architecture",
    subtopics=["cloud native architecture: current state"],
    queries=["cloud native architecture current state development"],
    checkpoints=["after search", "after extraction", "after analysis"],
)


def _clock() -> datetime:
    return FROZEN


@pytest.fixture
def make_enriched(make_candidate):
    def _make(url: str, status: EnrichmentStatus = EnrichmentStatus.SUCCESS, **fields) -> EnrichedSource:
        candidate = make_candidate(
            url,
            snippet=fields.pop("snippet", "Snippet sentence. Second sentence."),
            published_at=fields.pop("published_at", None),
        )
        return EnrichedSource.from_candidate(candidate, enrichment_status=status, **fields)

    return _make


class TestSanitizeTopic:
    """Tests for sanitize_topic."""

    @pytest.mark.parametrize(
        "topic,expected",
        [
            ("Cloud Native Architecture", "cloud-native-architecture"),
            ("  AI / ML: what's next?  ", "ai-ml-what-s-next"),
            ("云原生 架构", "云原生-架构"),
            ("../../etc/passwd", "etc-passwd"),
            ("!!!", "report"),
        ],
    )
    def test__topic__becomes_safe_slug(self, topic: str, expected: str) -> None:
        assert sanitize_topic(topic) == expected

    def test__long_topic__is_truncated(self) -> None:
        slug = sanitize_topic("word " * 40)
        assert len(slug) <= 50
        assert not slug.endswith("-")


class TestKeyFindings:
    """Tests for key finding selection."""

    def test__enriched_sources__come_first_by_quality(self, make_enriched) -> None:
        sources = [
            make_enriched("https://snippet.io", EnrichmentStatus.SKIPPED, skip_reason=SKIP_LOW_PRIORITY),
            make_enriched(
                "https://low.io",
                content_text="Low quality point. More.",
                quality=QualityAssessment(score=0.3),
            ),
            make_enriched(
                "https://high.io",
                content_text="High quality point! More.",
                quality=QualityAssessment(score=0.9),
            ),
        ]

        findings = key_findings(sources)

        assert [f.url for f in findings] == ["https://high.io", "https://low.io", "https://snippet.io"]
        assert findings[0].point == "High quality point!"
        assert findings[2].point == "Snippet sentence."

    def test__findings__are_capped(self, make_enriched) -> None:
        sources = [make_enriched(f"https://a.io/{i}", EnrichmentStatus.SKIPPED) for i in range(15)]
        assert len(key_findings(sources)) == 10

    def test__no_text__gives_no_findings(self, make_enriched) -> None:
        assert key_findings([make_enriched("https://a.io", EnrichmentStatus.FAILED, snippet="")]) == []


class TestLimitations:
    """Tests for limitation notes."""

    def test__counts__are_reported(self, make_enriched) -> None:
        sources = [
            make_enriched("https://a.io", EnrichmentStatus.FAILED, error="HTTP 404"),
            make_enriched("https://b.io", EnrichmentStatus.SKIPPED, skip_reason=SKIP_LOW_PRIORITY),
            make_enriched("https://c.io", EnrichmentStatus.SKIPPED, skip_reason=SKIP_LOW_PRIORITY),
        ]

        notes = limitations(sources, ResearchOptions(since=date(2024, 1, 1)))

        assert "1 source(s) could not be fetched or parsed" in notes
        assert any(note.startswith("2 lower-priority source(s)") for note in notes)
        assert "Sources published before 2024-01-01 were excluded" in notes
        assert notes[-1].startswith("Findings come from publicly available web sources")

    def test__degraded_enrichment__is_called_out(self, make_enriched) -> None:
        sources = [make_enriched("https://a.io", EnrichmentStatus.SKIPPED, skip_reason=SKIP_STAGE_DEGRADED)]

        notes = limitations(sources, ResearchOptions())

        assert notes[0].startswith("Full-content enrichment was unavailable")


class TestWriter:
    """Tests for Writer.execute and Writer.run."""

    @pytest.mark.asyncio
    async def test__execute__writes_dated_markdown_report(self, tmp_path: Path, make_enriched) -> None:
        sources = [
            make_enriched(
                "https://www.cncf.io/report",
                content_text="Containers dominate production workloads. More detail.",
                quality=QualityAssessment(score=0.8, labels=["authoritative"]),
                published_at=datetime(2024, 4, 2, tzinfo=UTC),
            ),
            make_enriched("https://a.io/404", EnrichmentStatus.FAILED, error="HTTP 404"),
        ]
        writer = Writer(tmp_path / "reports", clock=_clock)

        path = await writer.execute("Cloud Native Architecture", _PLAN, sources, ResearchOptions())

        assert path == tmp_path / "reports" / "2024-06-01-cloud-native-architecture.md"
        text = path.read_text(encoding="utf-8")
        assert text.startswith("# Research report: Cloud Native Architecture\n")
        assert "- Generated: 2024-06-01T09:30:00+00:00" in text
        assert "1. Containers dominate production workloads. ([source](https://www.cncf.io/report), 2024-04-02)" in text
        assert "(quality 0.80, authoritative)" in text
        assert "(not retrieved: HTTP 404)" in text
        for heading in ("## Key findings", "## Subtopics", "## Sources", "## Limitations", "## Method"):
            assert heading in text
        assert "Checkpoints: after search, after extraction, after analysis" in text
        assert list(path.parent.iterdir()) == [path]

    @pytest.mark.asyncio
    async def test__no_findings__says_so(self, tmp_path: Path, make_enriched) -> None:
        sources = [make_enriched("https://a.io", EnrichmentStatus.FAILED, snippet="", error="boom")]

        path = await Writer(tmp_path, clock=_clock).execute("topic", _PLAN, sources, ResearchOptions())

        assert "No findings could be extracted from the collected sources." in path.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test__existing_report__is_replaced(self, tmp_path: Path, make_enriched) -> None:
        writer = Writer(tmp_path, clock=_clock)
        destination = writer.destination_for("topic", FROZEN)
        destination.write_text("stale", encoding="utf-8")

        await writer.execute("topic", _PLAN, [make_enriched("https://a.io", EnrichmentStatus.SKIPPED)], ResearchOptions())

        assert "stale" not in destination.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test__renderer_os_error__raises_writing_error(self, tmp_path: Path) -> None:
        class BrokenRenderer:
            def render(self, context: ReportContext, destination: Path) -> Path:
                raise PermissionError("read-only file system")

        writer = Writer(tmp_path, BrokenRenderer(), clock=_clock)

        with pytest.raises(WritingError, match="read-only file system"):
            await writer.execute("topic", _PLAN, [], ResearchOptions())

    @pytest.mark.asyncio
    async def test__renderer__receives_structured_context(self, tmp_path: Path, make_enriched) -> None:
        seen: list[ReportContext] = []

        class RecordingRenderer:
            def render(self, context: ReportContext, destination: Path) -> Path:
                seen.append(context)
                return destination

        writer = Writer(tmp_path, RecordingRenderer(), clock=_clock)
        options = ResearchOptions(langs=["zh"], since=date(2024, 1, 1))

        await writer.execute("topic", _PLAN, [make_enriched("https://a.io", EnrichmentStatus.SKIPPED)], options)

        [context] = seen
        assert context.generated_at == FROZEN
        assert context.langs == ["zh"]
        assert context.since == date(2024, 1, 1)
        assert context.plan == _PLAN

    @pytest.mark.asyncio
    async def test__run__stores_report_path(self, tmp_path: Path, make_enriched) -> None:
        state = PipelineState(
            topic="topic",
            plan=_PLAN,
            enriched_sources=[make_enriched("https://a.io", EnrichmentStatus.SKIPPED)],
        )

        new_state = await Writer(tmp_path, clock=_clock).run(state)

        assert new_state.report_path == str(tmp_path / "2024-06-01-topic.md")

    @pytest.mark.asyncio
    async def test__run_without_enrichment__fails(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError, match="enriched_sources"):
            await Writer(tmp_path).run(PipelineState(topic="topic", plan=_PLAN))

    @pytest.mark.asyncio
    async def test__failed_replace__leaves_no_partial_file(
        self, tmp_path: Path, make_enriched, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _refuse(self: Path, target: Path) -> Path:
            raise OSError("cross-device link")

        monkeypatch.setattr(Path, "replace", _refuse)
        writer = Writer(tmp_path, clock=_clock)

        with pytest.raises(WritingError, match="cross-device link"):
            await writer.execute(
                "topic", _PLAN, [make_enriched("https://a.io", EnrichmentStatus.SKIPPED)], ResearchOptions()
            )

        assert list(tmp_path.iterdir()) == []
