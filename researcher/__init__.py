"""Research Pipeline - topic to cited report via plan, search, enrich and write stages"""

__version__ = "0.1.0"

from researcher.agents import clear_agent_cache, create_plan_agent, get_plan_agent
from researcher.config import Settings, get_settings, load_settings
from researcher.exceptions import (
    CapabilityUnavailableError,
    InvalidResearchInputError,
    NoSearchProviderAvailableError,
    PlanningError,
    ResearchPipelineError,
    SearchError,
    StageFailedError,
    ToolCallError,
    WritingError,
)
from researcher.models import (
    EnrichedSource,
    EnrichmentStatus,
    PipelineState,
    PipelineStatus,
    Plan,
    ResearchOptions,
    SourceCandidate,
    StageKind,
    StageTimings,
    ToolCallResult,
    ToolMode,
    WorkflowResult,
)
from researcher.relevance import calculate_relevance, validate_quality, validate_ranking
from researcher.server import get_app
from researcher.tools import ToolClient, create_tool_client
from researcher.workflow import ResearchWorkflow, RetryPolicy, run_research_workflow

__all__ = [
    # Models
    "ToolMode",
    "StageKind",
    "PipelineStatus",
    "EnrichmentStatus",
    "ResearchOptions",
    "Plan",
    "SourceCandidate",
    "EnrichedSource",
    "ToolCallResult",
    "PipelineState",
    "StageTimings",
    "WorkflowResult",
    # Configuration
    "Settings",
    "get_settings",
    "load_settings",
    # Agent factories
    "create_plan_agent",
    "get_plan_agent",
    "clear_agent_cache",
    # Relevance
    "calculate_relevance",
    "validate_quality",
    "validate_ranking",
    # Tools
    "ToolClient",
    "create_tool_client",
    # Exceptions
    "ResearchPipelineError",
    "InvalidResearchInputError",
    "CapabilityUnavailableError",
    "PlanningError",
    "SearchError",
    "NoSearchProviderAvailableError",
    "WritingError",
    "StageFailedError",
    "ToolCallError",
    # Workflow
    "ResearchWorkflow",
    "RetryPolicy",
    "run_research_workflow",
    # Server
    "get_app",
]
