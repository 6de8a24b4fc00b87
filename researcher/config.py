"""Environment-driven settings for the research pipeline."""

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr

from researcher.models import ToolMode

DEMO_ENVIRONMENTS = ("development", "staging")


class Settings(BaseModel):
    """Process-wide defaults; per-run values come from ResearchOptions."""

    environment: str = Field(default="development", description="Deployment environment name")
    default_tool_mode: ToolMode = Field(default=ToolMode.MOCK, description="Tool mode when a run does not choose one")
    max_sources_to_enrich: int = Field(default=5, ge=0, description="Top-K sources that receive enrichment")
    enrich_concurrency: int = Field(default=1, ge=1, le=3, description="Sources enriched at the same time")
    enrich_delay_s: float = Field(default=1.0, ge=0.0, description="Minimum gap between source fetches")
    tool_timeout_s: float = Field(default=30.0, gt=0.0, description="Upper bound for a single tool call")
    retry_attempts: int = Field(default=2, ge=1, description="Attempts per mandatory stage")
    retry_base_delay_s: float = Field(default=1.0, ge=0.0, description="Retry delay multiplied by the attempt number")
    report_dir: Path = Field(default=Path("workspace/reports"), description="Directory reports are written to")
    plan_model: str | None = Field(default=None, description="pydantic-ai model name for the LLM planner")
    brave_api_key: SecretStr | None = Field(default=None, description="Brave Search subscription token")
    serpapi_api_key: SecretStr | None = Field(default=None, description="SerpAPI key")

    @property
    def mock_modes_allowed(self) -> bool:
        """Mock and recorded tool modes are restricted to non-production environments."""
        return self.environment in DEMO_ENVIRONMENTS


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value if value else None


def load_settings() -> Settings:
    """Build settings from the process environment (after loading .env)."""
    load_dotenv()
    raw: dict[str, object] = {
        "environment": _env("ENVIRONMENT"),
        "default_tool_mode": _env("RESEARCH_TOOL_MODE"),
        "max_sources_to_enrich": _env("RESEARCH_MAX_SOURCES_TO_ENRICH"),
        "enrich_concurrency": _env("RESEARCH_ENRICH_CONCURRENCY"),
        "enrich_delay_s": _env("RESEARCH_ENRICH_DELAY_S"),
        "tool_timeout_s": _env("RESEARCH_TOOL_TIMEOUT_S"),
        "retry_attempts": _env("RESEARCH_RETRY_ATTEMPTS"),
        "retry_base_delay_s": _env("RESEARCH_RETRY_DELAY_S"),
        "report_dir": _env("RESEARCH_REPORT_DIR"),
        "plan_model": _env("RESEARCH_PLAN_MODEL"),
        "brave_api_key": _env("BRAVE_API_KEY"),
        "serpapi_api_key": _env("SERPAPI_API_KEY"),
    }
    return Settings.model_validate({key: value for key, value in raw.items() if value is not None})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings for production code paths."""
    return load_settings()
