"""Pydantic models for the research pipeline."""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from researcher.exceptions import ToolCallError


class ToolMode(str, Enum):
    """Execution mode of the tool invocation client."""

    REAL = "real"
    MOCK = "mock"
    TEST = "test"


class StageKind(str, Enum):
    """Pipeline stages in execution order."""

    PLAN = "plan"
    SEARCH = "search"
    ENRICH = "enrich"
    WRITE = "write"


class PipelineStatus(str, Enum):
    """Lifecycle status of a pipeline run."""

    IDLE = "idle"
    PLANNING = "planning"
    SEARCHING = "searching"
    ENRICHING = "enriching"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class EnrichmentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- Run input ---


class ResearchOptions(BaseModel):
    """Per-run options consumed by the pipeline."""

    langs: list[Literal["en", "zh"]] = Field(
        default_factory=lambda: ["en", "zh"],
        min_length=1,
        description="Languages to generate search queries for",
        examples=[["en", "zh"]],
    )
    depth: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Search depth; each query requests depth x 5 results",
        examples=[2],
    )
    since: date | None = Field(
        default=None,
        description="Drop dated candidates published before this day",
        examples=["2024-01-01"],
    )
    max_sources_to_enrich: int | None = Field(
        default=None,
        ge=0,
        description="Override for how many sources receive full-content enrichment",
        examples=[5],
    )
    mode: ToolMode | None = Field(
        default=None,
        description="Override for the tool invocation client mode",
        examples=["mock"],
    )


# --- Stage artifacts ---


class Plan(BaseModel):
    """Topic decomposition and ordered search queries."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(min_length=1, description="Research topic", examples=["cloud native architecture"])
    subtopics: list[str] = Field(
        default_factory=list,
        description="Ordered subtopics the report is organised around",
        examples=[["cloud native architecture: current state", "cloud native architecture: key technologies"]],
    )
    queries: list[str] = Field(
        min_length=1,
        description="Ordered search queries issued by the searcher",
        examples=[["cloud native architecture current state development"]],
    )
    checkpoints: list[str] = Field(
        default_factory=list,
        description="Named review points of the run",
        examples=[["after search", "after extraction", "after analysis"]],
    )


class PlanDraft(BaseModel):
    """Structured output of the LLM planning agent."""

    subtopics: list[str] = Field(
        min_length=1,
        max_length=8,
        description="Angles of the topic worth covering",
    )
    queries: list[str] = Field(
        min_length=1,
        max_length=10,
        description="Focused web search queries, most important first",
    )


class SearchHit(BaseModel):
    """A single raw hit returned by a search capability."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    url: str = Field(min_length=1)
    snippet: str = ""
    published_at: datetime | None = None
    lang: str | None = None

    @field_validator("published_at", mode="before")
    @classmethod
    def _drop_unparseable_date(cls, value: Any) -> Any:
        """Providers report ages like "3 days ago"; only ISO timestamps are kept."""
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        return value


class SourceCandidate(BaseModel):
    """A discovered source; unique by url within a run."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(min_length=1, description="Source URL", examples=["https://www.cncf.io/reports/cloud-native"])
    title: str = Field(default="", description="Result title")
    snippet: str = Field(default="", description="Result snippet")
    published_at: datetime | None = Field(default=None, description="Publication time if known")
    provider: str = Field(description="Capability that discovered this source", examples=["brave-search"])
    relevance_score: float = Field(ge=0.0, le=1.0, description="Relevance to the discovering query")
    lang: str | None = Field(default=None, description="Content language if known")
    query: str = Field(default="", description="Query that discovered this source")


class QualityAssessment(BaseModel):
    """Heuristic quality score of enriched content."""

    score: float = Field(ge=0.0, le=1.0, examples=[0.72])
    labels: list[str] = Field(default_factory=list, examples=[["authoritative"]])


class EnrichedSource(SourceCandidate):
    """A source after the enrichment stage; exactly one exists per candidate."""

    enrichment_status: EnrichmentStatus
    content_text: str | None = None
    quality: QualityAssessment | None = None
    enriched_at: datetime = Field(default_factory=utc_now)
    error: str | None = None
    skip_reason: str | None = None

    @classmethod
    def from_candidate(cls, candidate: SourceCandidate, **fields: Any) -> "EnrichedSource":
        return cls(**candidate.model_dump(), **fields)


class ToolCallResult(BaseModel):
    """Uniform envelope returned by every tool invocation."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    capability: str
    operation: str
    timestamp: datetime = Field(default_factory=utc_now)
    mode: ToolMode

    def unwrap(self) -> dict[str, Any]:
        """Return the payload, raising ToolCallError when the call failed."""
        if not self.success:
            raise ToolCallError(self.capability, self.operation, self.error or "unknown error")
        return self.data or {}


# --- Relevance checks ---


class QualityReport(BaseModel):
    is_valid: bool
    avg_relevance: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)


class RankingReport(BaseModel):
    is_valid: bool
    issues: list[str] = Field(default_factory=list)


# --- Report input ---


class KeyFinding(BaseModel):
    """One cited point in the report."""

    point: str
    url: str
    published_at: datetime | None = None


class ReportContext(BaseModel):
    """Structured input handed to a report renderer."""

    topic: str
    generated_at: datetime = Field(default_factory=utc_now)
    langs: list[str]
    since: date | None = None
    plan: Plan
    key_findings: list[KeyFinding] = Field(default_factory=list)
    sources: list[EnrichedSource] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)


# --- Run state and result ---


class PipelineState(BaseModel):
    """Latest artifact of every completed stage of one run."""

    status: PipelineStatus = PipelineStatus.IDLE
    topic: str = ""
    options: ResearchOptions = Field(default_factory=ResearchOptions)
    plan: Plan | None = None
    sources: list[SourceCandidate] | None = None
    enriched_sources: list[EnrichedSource] | None = None
    report_path: str | None = None
    degraded_stages: list[StageKind] = Field(default_factory=list)
    error: str | None = None


class StageTimings(BaseModel):
    """Timing metrics for each pipeline stage."""

    planning_ms: int = Field(default=0, ge=0, description="Time spent creating the plan (milliseconds)")
    searching_ms: int = Field(default=0, ge=0, description="Time spent searching (milliseconds)")
    enriching_ms: int = Field(default=0, ge=0, description="Time spent enriching sources (milliseconds)")
    writing_ms: int = Field(default=0, ge=0, description="Time spent writing the report (milliseconds)")
    total_ms: int = Field(default=0, ge=0, description="Total run time (milliseconds)")


class WorkflowResult(BaseModel):
    """Summary returned by a completed pipeline run."""

    success: bool = Field(description="Whether the run reached the done state", examples=[True])
    topic: str = Field(min_length=1, examples=["cloud native architecture"])
    report_path: str = Field(
        description="Destination path of the rendered report",
        examples=["workspace/reports/2024-06-01-cloud-native-architecture.md"],
    )
    sources_count: int = Field(ge=0, description="Number of deduplicated sources", examples=[12])
    enriched_count: int = Field(default=0, ge=0, description="Sources enriched successfully", examples=[4])
    failed_count: int = Field(default=0, ge=0, description="Sources whose enrichment failed", examples=[1])
    skipped_count: int = Field(default=0, ge=0, description="Sources not enriched", examples=[7])
    degraded_stages: list[StageKind] = Field(default_factory=list, description="Stages replaced by a fallback")
    duration_ms: int = Field(ge=0, description="Total run time (milliseconds)", examples=[26000])
    timings: StageTimings = Field(default_factory=StageTimings)
