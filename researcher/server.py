"""FastAPI application for the research pipeline service."""

import asyncio
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from researcher import __version__
from researcher.config import Settings, get_settings
from researcher.events import CompleteEvent, ErrorEvent, SSEEvent
from researcher.exceptions import ResearchPipelineError, StageFailedError
from researcher.logging import configure_structlog
from researcher.models import ResearchOptions, ToolMode, WorkflowResult
from researcher.workflow import MAX_TOPIC_LENGTH, run_research_workflow

log = structlog.get_logger("researcher.server")

# SSE Configuration
HEARTBEAT_INTERVAL = 30  # seconds
MAX_DURATION = 600  # 10 minutes
MAX_QUEUE_SIZE = 100  # Bounded queue to prevent memory leaks


# --- Request/Response schemas ---


class ResearchRequest(BaseModel):
    """Incoming research request."""

    topic: str = Field(
        min_length=1,
        max_length=MAX_TOPIC_LENGTH,
        description=f"Research topic (1-{MAX_TOPIC_LENGTH} characters)",
        examples=["cloud native architecture"],
    )
    options: ResearchOptions = Field(
        default_factory=ResearchOptions,
        description="Languages, search depth, since-date, enrichment cap and tool mode",
    )


class ErrorResponse(BaseModel):
    """Structured error response."""

    error: str = Field(
        description="Error type (StageFailedError, CapabilityUnavailableError, InvalidResearchInputError, "
        "ValidationError, InternalServerError)",
        examples=["StageFailedError"],
    )
    detail: str = Field(
        description="User-friendly error message explaining what went wrong",
        examples=["Research stage 'search' failed after 2 attempt(s). Please try again."],
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(
        description="Service health status",
        examples=["ok"],
    )
    version: str = Field(
        default="",
        description="Service version (only included in /health endpoint)",
        examples=["0.1.0"],
    )


# --- Exception handlers ---

# Map domain exception types to user-friendly messages
_SAFE_ERROR_MESSAGES: dict[str, str] = {
    "InvalidResearchInputError": "The research topic or options are invalid.",
    "CapabilityUnavailableError": "A required research tool is not available in this deployment.",
    "NoSearchProviderAvailableError": "No search provider returned results. Check search API configuration.",
    "PlanningError": "Unable to create research plan. Please try a different topic.",
    "SearchError": "Unable to find sources for this topic. Please try again.",
    "WritingError": "Unable to write the research report. Please try again.",
}


def _safe_error_message(exc: Exception) -> str:
    if isinstance(exc, StageFailedError):
        return f"Research stage '{exc.stage}' failed after {exc.attempts} attempt(s). Please try again."
    return _SAFE_ERROR_MESSAGES.get(type(exc).__name__, "An error occurred processing your request.")


async def _handle_pipeline_error(request: Request, exc: ResearchPipelineError) -> JSONResponse:
    error_type = type(exc).__name__
    log.warning("request.pipeline_error", error_type=error_type, detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error=error_type, detail=_safe_error_message(exc)).model_dump(),
    )


async def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    log.warning("request.validation_error", detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="ValidationError", detail=str(exc)).model_dump(),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unexpected_error", error=str(exc))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="InternalServerError", detail="An unexpected error occurred.").model_dump(),
    )


# --- App factory ---


def get_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_structlog(testing=settings.environment == "development")

    application = FastAPI(
        title="Research Pipeline Service",
        description="""
Automated multi-stage research producing a cited Markdown report.

## Overview

Each request runs a topic through four sequential stages:

1. **Plan** - Splits the topic into subtopics and per-language search queries
2. **Search** - Queries Brave Search, falling back to SerpAPI, then dedupes and ranks by relevance
3. **Enrich** - Fetches, extracts and quality-scores the top sources (failures degrade, never abort)
4. **Write** - Renders the report with key findings, sources and limitations

## Tool modes

- **real** - live search APIs and HTTP fetches (requires BRAVE_API_KEY or SERPAPI_API_KEY)
- **mock** - deterministic synthetic data, development and staging only
- **test** - fixed recorded responses, development and staging only
        """,
        version=__version__,
    )

    application.add_exception_handler(ResearchPipelineError, _handle_pipeline_error)  # type: ignore[arg-type]
    application.add_exception_handler(ValidationError, _handle_validation_error)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, _handle_unexpected_error)

    def _check_tool_mode(options: ResearchOptions, endpoint: str) -> None:
        """Mock and recorded data never leave development and staging."""
        mode = options.mode or settings.default_tool_mode
        if mode is not ToolMode.REAL:
            if not settings.mock_modes_allowed:
                raise HTTPException(
                    status_code=403,
                    detail=f"Tool mode '{mode.value}' not available in this environment",
                )
            log.warning("synthetic_tool_mode_active", mode=mode.value, endpoint=endpoint)

    @application.post(
        "/research",
        response_model=WorkflowResult,
        status_code=status.HTTP_200_OK,
        summary="Execute Research Pipeline",
        description="""
Runs plan, search, enrich and write for the topic and returns a run summary.

Mandatory stages (plan, search, write) are retried before the run fails.
Enrichment failures are absorbed: the report is still written, with the
affected sources marked as not retrieved.
        """,
        tags=["Research"],
        response_description="Run summary with report path, source counts and stage timings",
        responses={
            200: {"description": "Research completed successfully", "model": WorkflowResult},
            403: {"description": "Requested tool mode is not available in this environment"},
            422: {
                "description": "Research pipeline error (invalid input, unavailable capability or failed stage)",
                "model": ErrorResponse,
                "content": {
                    "application/json": {
                        "examples": {
                            "stage_failed": {
                                "summary": "Stage Failed",
                                "value": {
                                    "error": "StageFailedError",
                                    "detail": "Research stage 'search' failed after 2 attempt(s). Please try again.",
                                },
                            },
                            "capability_unavailable": {
                                "summary": "Capability Unavailable",
                                "value": {
                                    "error": "CapabilityUnavailableError",
                                    "detail": "A required research tool is not available in this deployment.",
                                },
                            },
                        }
                    }
                },
            },
            500: {
                "description": "Internal server error",
                "model": ErrorResponse,
                "content": {
                    "application/json": {
                        "example": {
                            "error": "InternalServerError",
                            "detail": "An unexpected error occurred.",
                        }
                    }
                },
            },
        },
    )
    async def research(body: ResearchRequest) -> WorkflowResult:
        _check_tool_mode(body.options, "/research")
        return await run_research_workflow(body.topic, body.options, settings=settings)

    @application.post(
        "/research/stream",
        response_class=StreamingResponse,
        responses={
            200: {
                "description": "Server-Sent Events stream of research progress",
                "content": {"text/event-stream": {"example": "event: stage_complete\ndata: {...}\n\n"}},
            },
            403: {"description": "Requested tool mode is not available in this environment"},
            422: {"model": ErrorResponse},
        },
        summary="Execute research with streaming progress updates",
        description="""
Runs the research pipeline with real-time progress updates via SSE.

**Event Types:**
- `stage_start`: Stage beginning (plan, search, enrich, write)
- `stage_complete`: Stage finished with duration and summary
- `stage_warning`: Retry scheduled or stage replaced by its fallback
- `enrichment_progress`: Individual source enrichment completion (N of M)
- `heartbeat`: Keep-alive comment every 30s (`: keepalive`)
- `complete`: Final WorkflowResult
- `error`: Run failed

**Connection:** Automatically closes after completion or a 10-minute timeout.
        """,
        tags=["Research"],
    )
    async def research_stream(request: Request, research_request: ResearchRequest) -> StreamingResponse:
        """Execute the research pipeline with SSE progress streaming."""
        _check_tool_mode(research_request.options, "/research/stream")

        async def event_generator() -> AsyncIterator[str]:
            """Generate SSE events from pipeline execution."""
            event_queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
            workflow_complete = asyncio.Event()

            async def event_callback(event: SSEEvent) -> None:
                """Callback for the pipeline to emit events (with backpressure)."""
                try:
                    await asyncio.wait_for(event_queue.put(event), timeout=5.0)
                except asyncio.TimeoutError:
                    log.warning("event_queue_full", event=event.event)

            async def run_workflow_task() -> None:
                """Background task executing the pipeline."""
                try:
                    result = await run_research_workflow(
                        research_request.topic,
                        research_request.options,
                        event_callback=event_callback,
                        settings=settings,
                    )
                    await event_queue.put(CompleteEvent(data=result.model_dump(mode="json")))
                except Exception as e:
                    log.error("workflow_error", error=str(e), exc_info=True)
                    await event_queue.put(
                        ErrorEvent(
                            data={
                                "error": _safe_error_message(e),
                                "error_type": e.__class__.__name__,
                                "stage": getattr(e, "stage", "unknown"),
                            }
                        )
                    )
                finally:
                    workflow_complete.set()

            workflow_task = asyncio.create_task(run_workflow_task())

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            next_heartbeat = start_time + HEARTBEAT_INTERVAL

            try:
                while not workflow_complete.is_set():
                    current_time = loop.time()
                    elapsed = current_time - start_time

                    if elapsed > MAX_DURATION:
                        log.warning("stream_timeout", elapsed=elapsed, max=MAX_DURATION)
                        workflow_task.cancel()
                        yield ErrorEvent(
                            data={
                                "error": "Research timeout - pipeline exceeded 10 minutes",
                                "error_type": "TimeoutError",
                                "stage": "timeout",
                            }
                        ).format()
                        break

                    if await request.is_disconnected():
                        log.info("client_disconnected", elapsed=elapsed)
                        workflow_task.cancel()
                        break

                    # Heartbeat schedule advances by a fixed step so it never drifts
                    if current_time >= next_heartbeat:
                        yield ": keepalive\n\n"
                        next_heartbeat += HEARTBEAT_INTERVAL

                    try:
                        event = await asyncio.wait_for(event_queue.get(), timeout=0.1)
                        yield event.format()
                    except asyncio.TimeoutError:
                        continue

                while not event_queue.empty():
                    yield event_queue.get_nowait().format()

            finally:
                workflow_task.cancel()
                try:
                    await asyncio.wait_for(workflow_task, timeout=10.0)
                except asyncio.CancelledError:
                    log.info("workflow_cancelled")
                except asyncio.TimeoutError:
                    log.error("workflow_cancellation_timeout")
                except Exception as e:
                    log.exception("workflow_failed_during_cleanup", error=str(e))

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",  # Disable proxy buffering
                "Connection": "keep-alive",
            },
        )

    @application.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Health Check",
        description="General health check endpoint that returns service status and version.",
        tags=["Health"],
        response_description="Service health status and version",
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @application.get(
        "/health/liveness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Liveness Check",
        description="Returns 200 OK while the process can accept requests.",
        tags=["Health"],
        response_description="Service is alive and accepting requests",
    )
    async def liveness() -> HealthResponse:
        return HealthResponse(status="alive")

    @application.get(
        "/health/readiness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Readiness Check",
        description="""
Returns 200 OK when the service can run research in its configured tool mode.

In real mode at least one search API key must be configured.
        """,
        tags=["Health"],
        response_description="Service is ready to handle research requests",
    )
    async def readiness() -> HealthResponse:
        if settings.default_tool_mode is ToolMode.REAL and not (settings.brave_api_key or settings.serpapi_api_key):
            raise HTTPException(status_code=503, detail="No search API key configured for real tool mode")
        return HealthResponse(status="ready")

    return application


app = get_app()
