"""PydanticAI planning agent used when an LLM planner is configured."""

from functools import lru_cache
from typing import Any

from pydantic_ai import Agent

from researcher.models import PlanDraft

PLAN_INSTRUCTIONS = """You are a research planning expert. Given a topic, break it
into the angles a decision-support report should cover and write focused web
search queries for them.
Your plan should:
- List 3-8 subtopics, each a short noun phrase
- Give 3-10 search queries, most important first
- Write queries in every requested language
- Prefer concrete terms (technologies, standards, organisations) over vague ones
Do not answer the research question itself."""


def create_plan_agent(model: Any) -> Agent[None, PlanDraft]:
    """Uncached factory - use with TestModel for tests."""
    return Agent(
        model,
        instructions=PLAN_INSTRUCTIONS,
        output_type=PlanDraft,
        name="plan_agent",
    )


@lru_cache(maxsize=4)
def get_plan_agent(model: str) -> Agent[None, PlanDraft]:
    """Cached getter for production."""
    return create_plan_agent(model)


def clear_agent_cache() -> None:
    get_plan_agent.cache_clear()
