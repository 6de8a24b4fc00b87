"""Research pipeline orchestrator: plan, search, enrich, write."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any
from uuid import uuid4

from pydantic import ValidationError
from pydantic_ai import Agent
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from researcher.config import Settings, get_settings
from researcher.events import (
    EnrichmentProgressEvent,
    EventCallback,
    SSEEvent,
    StageCompleteEvent,
    StageStartEvent,
    StageWarningEvent,
)
from researcher.exceptions import (
    CapabilityUnavailableError,
    InvalidResearchInputError,
    StageFailedError,
)
from researcher.logging import bind_run, bind_stage, clear_run, get_logger
from researcher.models import (
    EnrichmentStatus,
    PipelineState,
    PipelineStatus,
    PlanDraft,
    ResearchOptions,
    StageKind,
    StageTimings,
    WorkflowResult,
)
from researcher.report import ReportRenderer
from researcher.stages import DegradableStage, Enricher, Planner, Searcher, Stage, Writer
from researcher.tools.client import ToolClient, create_tool_client

log = get_logger("researcher.workflow")

MAX_TOPIC_LENGTH = 500


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts for a mandatory stage; waits ``attempt * base_delay_s`` after each failed attempt."""

    max_attempts: int = 2
    base_delay_s: float = 1.0

    def retrying(self, before_sleep: Callable[[RetryCallState], Awaitable[None]]) -> AsyncRetrying:
        # CancelledError is a BaseException and must not be retried.
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay_s, increment=self.base_delay_s),
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(CapabilityUnavailableError),
            before_sleep=before_sleep,
            reraise=True,
        )


_STAGE_STATUS = {
    StageKind.PLAN: PipelineStatus.PLANNING,
    StageKind.SEARCH: PipelineStatus.SEARCHING,
    StageKind.ENRICH: PipelineStatus.ENRICHING,
    StageKind.WRITE: PipelineStatus.WRITING,
}

_TIMING_FIELDS = {
    StageKind.PLAN: "planning_ms",
    StageKind.SEARCH: "searching_ms",
    StageKind.ENRICH: "enriching_ms",
    StageKind.WRITE: "writing_ms",
}

# Enrichment never fails the run, so there is no ENRICHING -> FAILED edge.
_TRANSITIONS: dict[PipelineStatus, frozenset[PipelineStatus]] = {
    PipelineStatus.IDLE: frozenset({PipelineStatus.PLANNING}),
    PipelineStatus.PLANNING: frozenset({PipelineStatus.SEARCHING, PipelineStatus.FAILED}),
    PipelineStatus.SEARCHING: frozenset({PipelineStatus.ENRICHING, PipelineStatus.FAILED}),
    PipelineStatus.ENRICHING: frozenset({PipelineStatus.WRITING}),
    PipelineStatus.WRITING: frozenset({PipelineStatus.DONE, PipelineStatus.FAILED}),
    PipelineStatus.DONE: frozenset(),
    PipelineStatus.FAILED: frozenset(),
}


def _elapsed_ms(start: float) -> int:
    return int((perf_counter() - start) * 1000)


def _output_summary(state: PipelineState, kind: StageKind) -> dict[str, Any]:
    if kind is StageKind.PLAN and state.plan is not None:
        return {"subtopics": len(state.plan.subtopics), "queries": len(state.plan.queries)}
    if kind is StageKind.SEARCH and state.sources is not None:
        return {"sources": len(state.sources)}
    if kind is StageKind.ENRICH and state.enriched_sources is not None:
        return {
            status.value: sum(1 for s in state.enriched_sources if s.enrichment_status is status)
            for status in EnrichmentStatus
        }
    if kind is StageKind.WRITE:
        return {"report_path": state.report_path}
    return {}


class ResearchWorkflow:
    """Runs one topic through the fixed stage sequence.

    An instance owns the state of a single run and is not reusable. Mandatory
    stages (plan, search, write) are retried per their ``RetryPolicy`` and fail
    the run with ``StageFailedError`` once exhausted; a missing capability fails
    it immediately with ``CapabilityUnavailableError``. Enrichment degrades to
    its fallback instead of failing.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        tool_client: ToolClient | None = None,
        plan_agent: Agent[Any, PlanDraft] | None = None,
        renderer: ReportRenderer | None = None,
        retry_policies: Mapping[StageKind, RetryPolicy] | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._tool_client = tool_client
        self._plan_agent = plan_agent
        self._renderer = renderer
        default_policy = RetryPolicy(self._settings.retry_attempts, self._settings.retry_base_delay_s)
        self._retry_policies = {
            kind: (retry_policies or {}).get(kind, default_policy)
            for kind in (StageKind.PLAN, StageKind.SEARCH, StageKind.WRITE)
        }
        self._event_callback = event_callback
        self._state = PipelineState()
        self._timings = StageTimings()

    def get_state(self) -> PipelineState:
        """Snapshot of the run; mutating it does not affect the pipeline."""
        return self._state.model_copy(deep=True)

    async def execute(self, topic: str, options: ResearchOptions | Mapping[str, Any] | None = None) -> WorkflowResult:
        if self._state.status is not PipelineStatus.IDLE:
            raise RuntimeError("ResearchWorkflow runs a single topic; create a new instance per run")

        topic, run_options = self._validate_input(topic, options)
        run_id = str(uuid4())[:8]
        bind_run(run_id)
        self._state = PipelineState(topic=topic, options=run_options)

        mode = run_options.mode or self._settings.default_tool_mode
        client = self._tool_client or create_tool_client(mode, self._settings)
        owns_client = self._tool_client is None

        workflow_start = perf_counter()
        log.info("workflow.started", topic=topic, mode=client.mode.value, langs=run_options.langs)
        try:
            for stage in self._build_stages(client, run_options):
                await self._run_stage(stage)
            self._transition(PipelineStatus.DONE)
        except (StageFailedError, CapabilityUnavailableError) as e:
            self._state = self._state.model_copy(update={"error": str(e)})
            self._transition(PipelineStatus.FAILED)
            log.error("workflow.failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            if owns_client:
                await client.aclose()
            clear_run()

        total_ms = _elapsed_ms(workflow_start)
        self._timings = self._timings.model_copy(update={"total_ms": total_ms})
        result = self._build_result(total_ms)
        log.info(
            "workflow.completed",
            total_ms=total_ms,
            sources=result.sources_count,
            enriched=result.enriched_count,
            degraded=[kind.value for kind in result.degraded_stages],
        )
        return result

    # --- input ---

    def _validate_input(
        self,
        topic: str,
        options: ResearchOptions | Mapping[str, Any] | None,
    ) -> tuple[str, ResearchOptions]:
        if not isinstance(topic, str) or not topic.strip():
            raise InvalidResearchInputError("topic must be a non-empty string")
        topic = " ".join(topic.split())
        if len(topic) > MAX_TOPIC_LENGTH:
            raise InvalidResearchInputError(f"topic must be at most {MAX_TOPIC_LENGTH} characters")

        if options is None:
            return topic, ResearchOptions()
        if isinstance(options, ResearchOptions):
            return topic, options
        try:
            return topic, ResearchOptions.model_validate(options)
        except ValidationError as e:
            raise InvalidResearchInputError(str(e)) from e

    # --- stages ---

    def _build_stages(self, client: ToolClient, options: ResearchOptions) -> tuple[Stage, ...]:
        max_sources = options.max_sources_to_enrich
        return (
            Planner(self._plan_agent, plan_model=self._settings.plan_model),
            Searcher(client),
            Enricher(
                client,
                max_sources=self._settings.max_sources_to_enrich if max_sources is None else max_sources,
                concurrency=self._settings.enrich_concurrency,
                delay_s=self._settings.enrich_delay_s,
                on_progress=self._on_enrichment_progress,
            ),
            Writer(Path(self._settings.report_dir), self._renderer),
        )

    def _transition(self, target: PipelineStatus) -> None:
        current = self._state.status
        if target not in _TRANSITIONS[current]:
            raise RuntimeError(f"Illegal pipeline transition {current.value} -> {target.value}")
        self._state = self._state.model_copy(update={"status": target})

    async def _run_stage(self, stage: Stage) -> None:
        self._transition(_STAGE_STATUS[stage.kind])
        bind_stage(stage.kind.value)
        await self._emit(StageStartEvent(data={"stage": stage.kind.value}))
        log.info("workflow.stage.started")

        stage_start = perf_counter()
        if stage.mandatory:
            self._state = await self._run_with_retry(stage)
        elif isinstance(stage, DegradableStage):
            self._state = await self._run_degradable(stage)
        else:
            raise TypeError(f"Optional stage {stage.kind.value!r} has no fallback")
        duration_ms = _elapsed_ms(stage_start)
        self._timings = self._timings.model_copy(update={_TIMING_FIELDS[stage.kind]: duration_ms})

        summary = _output_summary(self._state, stage.kind)
        log.info("workflow.stage.completed", duration_ms=duration_ms, **summary)
        await self._emit(
            StageCompleteEvent(
                data={"stage": stage.kind.value, "duration_ms": duration_ms, "output_summary": summary}
            )
        )

    async def _run_with_retry(self, stage: Stage) -> PipelineState:
        policy = self._retry_policies[stage.kind]

        async def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log.warning(
                "workflow.stage.attempt_failed",
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                retry_in_s=delay,
                error=str(error),
                error_type=type(error).__name__,
            )
            await self._emit(
                StageWarningEvent(
                    data={
                        "stage": stage.kind.value,
                        "warning": f"Attempt {retry_state.attempt_number} failed, retrying in {delay:g}s: {error}",
                    }
                )
            )

        try:
            async for attempt in policy.retrying(_before_sleep):
                with attempt:
                    return await stage.run(self._state)
        except CapabilityUnavailableError:
            raise
        except Exception as e:
            log.warning(
                "workflow.stage.attempt_failed",
                attempt=policy.max_attempts,
                max_attempts=policy.max_attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StageFailedError(stage.kind.value, policy.max_attempts, e) from e
        raise RuntimeError(f"Stage {stage.kind.value!r} retry loop ended without a result")

    async def _run_degradable(self, stage: DegradableStage) -> PipelineState:
        try:
            return await stage.run(self._state)
        except Exception as e:
            log.warning("workflow.stage.degraded", error=str(e), error_type=type(e).__name__)
            await self._emit(
                StageWarningEvent(
                    data={
                        "stage": stage.kind.value,
                        "warning": f"Stage failed, continuing with fallback output: {e}",
                    }
                )
            )
            degraded = stage.fallback(self._state)
            return degraded.model_copy(update={"degraded_stages": [*degraded.degraded_stages, stage.kind]})

    # --- events and result ---

    async def _emit(self, event: SSEEvent) -> None:
        if self._event_callback is not None:
            await self._event_callback(event)

    async def _on_enrichment_progress(self, completed: int, total: int, url: str) -> None:
        await self._emit(EnrichmentProgressEvent(data={"completed": completed, "total": total, "current_url": url}))

    def _build_result(self, total_ms: int) -> WorkflowResult:
        enriched = self._state.enriched_sources or []

        def _count(status: EnrichmentStatus) -> int:
            return sum(1 for s in enriched if s.enrichment_status is status)

        return WorkflowResult(
            success=self._state.status is PipelineStatus.DONE,
            topic=self._state.topic,
            report_path=self._state.report_path or "",
            sources_count=len(self._state.sources or []),
            enriched_count=_count(EnrichmentStatus.SUCCESS),
            failed_count=_count(EnrichmentStatus.FAILED),
            skipped_count=_count(EnrichmentStatus.SKIPPED),
            degraded_stages=list(self._state.degraded_stages),
            duration_ms=total_ms,
            timings=self._timings,
        )


async def run_research_workflow(
    topic: str,
    options: ResearchOptions | Mapping[str, Any] | None = None,
    *,
    event_callback: EventCallback | None = None,
    tool_client: ToolClient | None = None,
    plan_agent: Agent[Any, PlanDraft] | None = None,
    renderer: ReportRenderer | None = None,
    settings: Settings | None = None,
) -> WorkflowResult:
    """Execute the research pipeline for ``topic``.

    Args:
        topic: Research topic (1-500 characters).
        options: Per-run options; a mapping is validated into ResearchOptions.
        event_callback: Receives stage and progress events (for streaming).
        tool_client: Override the tool client (for testing); otherwise one is
            created for ``options.mode`` or the configured default mode.
        plan_agent: Override the planning agent (for testing).
        renderer: Override the report renderer.
        settings: Override process settings.

    Returns:
        WorkflowResult with counts, degraded stages and timing metrics.

    Raises:
        InvalidResearchInputError: When the topic or options are rejected.
        CapabilityUnavailableError: When a required capability is not registered.
        StageFailedError: When a mandatory stage exhausts its retries.
    """
    workflow = ResearchWorkflow(
        settings,
        tool_client=tool_client,
        plan_agent=plan_agent,
        renderer=renderer,
        event_callback=event_callback,
    )
    return await workflow.execute(topic, options)
