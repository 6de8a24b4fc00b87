"""SSE event models for research pipeline streaming."""

import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SSEEventType(str, Enum):
    """SSE event types for the research pipeline."""

    STAGE_START = "stage_start"
    STAGE_COMPLETE = "stage_complete"
    STAGE_WARNING = "stage_warning"
    ENRICHMENT_PROGRESS = "enrichment_progress"
    HEARTBEAT = "heartbeat"
    COMPLETE = "complete"
    ERROR = "error"


class SSEEvent(BaseModel):
    """Base SSE event model."""

    event: SSEEventType = Field(description="Event type identifier")
    data: dict[str, Any] = Field(description="Event payload data")

    def format(self) -> str:
        """Format as SSE message: 'event: type\\ndata: json\\n\\n'."""
        return f"event: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"


EventCallback = Callable[[SSEEvent], Awaitable[None]]


class StageStartEvent(SSEEvent):
    """Event emitted when a pipeline stage begins."""

    event: SSEEventType = SSEEventType.STAGE_START
    data: dict[str, str] = Field(
        description="Stage identifier",
        examples=[{"stage": "search"}],
    )


class StageCompleteEvent(SSEEvent):
    """Event emitted when a pipeline stage completes."""

    event: SSEEventType = SSEEventType.STAGE_COMPLETE
    data: dict[str, Any] = Field(
        description="Stage completion details with duration and summary",
        examples=[
            {
                "stage": "search",
                "duration_ms": 4200,
                "output_summary": {"sources": 12},
            }
        ],
    )


class StageWarningEvent(SSEEvent):
    """Event emitted when a stage is retried or replaced by its fallback."""

    event: SSEEventType = SSEEventType.STAGE_WARNING
    data: dict[str, str] = Field(
        description="Warning details",
        examples=[
            {
                "stage": "enrich",
                "warning": "Enrichment failed, continuing with unenriched sources",
            }
        ],
    )


class EnrichmentProgressEvent(SSEEvent):
    """Event emitted after each source finishes enrichment."""

    event: SSEEventType = SSEEventType.ENRICHMENT_PROGRESS
    data: dict[str, Any] = Field(
        description="Enrichment progress details",
        examples=[
            {
                "completed": 2,
                "total": 5,
                "current_url": "https://www.cncf.io/reports/cloud-native-architecture-state",
            }
        ],
    )


class HeartbeatEvent(SSEEvent):
    """Heartbeat event to prevent proxy buffering.

    Formatted as SSE comment (': keepalive\\n\\n') instead of
    named event to avoid requiring client-side handling.
    """

    event: SSEEventType = SSEEventType.HEARTBEAT
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Empty data for heartbeat",
    )

    def format(self) -> str:
        """Format as SSE comment for compatibility."""
        return ": keepalive\n\n"


class CompleteEvent(SSEEvent):
    """Event emitted when the pipeline reaches the done state."""

    event: SSEEventType = SSEEventType.COMPLETE
    data: dict[str, Any] = Field(
        description="Full WorkflowResult serialized",
        examples=[
            {
                "success": True,
                "topic": "cloud native architecture",
                "report_path": "workspace/reports/2024-06-01-cloud-native-architecture.md",
                "sources_count": 12,
                "enriched_count": 4,
                "failed_count": 1,
                "skipped_count": 7,
                "degraded_stages": [],
                "duration_ms": 26000,
            }
        ],
    )


class ErrorEvent(SSEEvent):
    """Event emitted when the pipeline fails."""

    event: SSEEventType = SSEEventType.ERROR
    data: dict[str, str] = Field(
        description="Error details with stage context",
        examples=[
            {
                "error": "Stage 'search' failed after 2 attempt(s): Search failed: ...",
                "stage": "search",
                "error_type": "StageFailedError",
            }
        ],
    )
