"""Planning stage: topic decomposition and search query generation."""

from collections.abc import Callable
from datetime import date
from typing import Any

from pydantic_ai import Agent

from researcher.agents import get_plan_agent
from researcher.exceptions import PlanningError
from researcher.logging import get_logger
from researcher.models import PipelineState, Plan, PlanDraft, ResearchOptions, StageKind

log = get_logger("researcher.stages.planner")

CHECKPOINTS = ("after search", "after extraction", "after analysis")

SUBTOPIC_TEMPLATES = (
    "{topic}: current state",
    "{topic}: development trends",
    "{topic}: key technologies",
    "{topic}: applications",
    "{topic}: challenges and opportunities",
)

QUERY_TEMPLATES: dict[str, tuple[str, ...]] = {
    "en": (
        "{topic} current state development",
        "{topic} technology trends {year}",
        "{topic} applications use cases",
    ),
    "zh": (
        "{topic} 现状 发展",
        "{topic} 技术趋势 {year}",
        "{topic} 应用 案例",
    ),
}


def template_plan(topic: str, options: ResearchOptions, year: int) -> Plan:
    """Deterministic plan: fixed subtopics, three queries per requested language."""
    queries = [
        template.format(topic=topic, year=year)
        for lang in options.langs
        for template in QUERY_TEMPLATES[lang]
    ]
    return Plan(
        topic=topic,
        subtopics=[template.format(topic=topic) for template in SUBTOPIC_TEMPLATES],
        queries=queries,
        checkpoints=list(CHECKPOINTS),
    )


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        cleaned = " ".join(value.split())
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            unique.append(cleaned)
    return unique


class Planner:
    """Builds the run's Plan from templates, or from the planning agent when one is configured.

    ``plan_model`` names a PydanticAI model that is turned into an agent at
    planning time, so a bad model name fails the stage like any other agent
    error. An explicit ``plan_agent`` wins over ``plan_model``.
    """

    kind = StageKind.PLAN
    mandatory = True

    def __init__(
        self,
        plan_agent: Agent[Any, PlanDraft] | None = None,
        *,
        plan_model: str | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._plan_agent = plan_agent
        self._plan_model = plan_model
        self._today = today

    @property
    def uses_agent(self) -> bool:
        return self._plan_agent is not None or bool(self._plan_model)

    async def run(self, state: PipelineState) -> PipelineState:
        plan = await self.execute(state.topic, state.options)
        return state.model_copy(update={"plan": plan})

    async def execute(self, topic: str, options: ResearchOptions) -> Plan:
        topic = topic.strip()
        if not topic:
            raise PlanningError(topic=topic, reason="topic is empty")

        year = self._today().year
        if self.uses_agent:
            plan = await self._plan_with_agent(topic, options, year)
        else:
            plan = template_plan(topic, options, year)

        log.info(
            "planner.plan.created",
            subtopic_count=len(plan.subtopics),
            query_count=len(plan.queries),
            llm=self.uses_agent,
        )
        return plan

    def _resolve_agent(self) -> Agent[Any, PlanDraft]:
        if self._plan_agent is not None:
            return self._plan_agent
        if not self._plan_model:
            raise ValueError("no planning agent or model configured")
        return get_plan_agent(self._plan_model)

    async def _plan_with_agent(self, topic: str, options: ResearchOptions, year: int) -> Plan:
        prompt = f"Topic: {topic}\nLanguages: {', '.join(options.langs)}\nCurrent year: {year}"
        try:
            result = await self._resolve_agent().run(prompt)
        except Exception as e:
            log.error("planner.agent.failed", error=str(e), model=self._plan_model)
            raise PlanningError(topic=topic, reason=str(e)) from e

        draft = result.output
        queries = _unique(draft.queries)
        if not queries:
            raise PlanningError(topic=topic, reason="planning agent returned no usable queries")
        return Plan(
            topic=topic,
            subtopics=_unique(draft.subtopics),
            queries=queries,
            checkpoints=list(CHECKPOINTS),
        )
