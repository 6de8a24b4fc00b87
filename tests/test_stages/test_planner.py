"""Tests for the planning stage."""

from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from pydantic_ai.models.test import TestModel

from researcher.agents import create_plan_agent
from researcher.exceptions import PlanningError
from researcher.models import PipelineState, PlanDraft, ResearchOptions
from researcher.stages.planner import CHECKPOINTS, Planner, template_plan


def _today() -> date:
    return date(2024, 6, 1)


class TestTemplatePlan:
    """Tests for the deterministic template plan."""

    def test__both_languages__produce_three_queries_each(self) -> None:
        plan = template_plan("cloud native architecture", ResearchOptions(), 2024)

        assert plan.queries == [
            "cloud native architecture current state development",
            "cloud native architecture technology trends 2024",
            "cloud native architecture applications use cases",
            "cloud native architecture 现状 发展",
            "cloud native architecture 技术趋势 2024",
            "cloud native architecture 应用 案例",
        ]
        assert plan.checkpoints == list(CHECKPOINTS)
        assert len(plan.subtopics) == 5
        assert all(subtopic.startswith("cloud native architecture: ") for subtopic in plan.subtopics)

    def test__single_language__limits_queries(self) -> None:
        plan = template_plan("边缘计算", ResearchOptions(langs=["zh"]), 2024)
        assert plan.queries == ["边缘计算 现状 发展", "边缘计算 技术趋势 2024", "边缘计算 应用 案例"]


class TestPlanner:
    """Tests for the Planner stage."""

    @pytest.mark.asyncio
    async def test__without_agent__uses_template_with_current_year(self) -> None:
        planner = Planner(today=_today)

        plan = await planner.execute("  service mesh  ", ResearchOptions(langs=["en"]))

        assert plan.topic == "service mesh"
        assert "service mesh technology trends 2024" in plan.queries

    @pytest.mark.asyncio
    async def test__run__stores_plan_on_new_state(self) -> None:
        state = PipelineState(topic="service mesh", options=ResearchOptions(langs=["en"]))

        new_state = await Planner(today=_today).run(state)

        assert new_state.plan is not None
        assert state.plan is None

    @pytest.mark.asyncio
    async def test__empty_topic__raises_planning_error(self) -> None:
        with pytest.raises(PlanningError):
            await Planner().execute("   ", ResearchOptions())

    @pytest.mark.asyncio
    async def test__agent__drafts_queries(self) -> None:
        draft = PlanDraft(
            subtopics=["adoption", "tooling"],
            queries=["service mesh adoption", "Service  mesh adoption", "istio vs linkerd"],
        )
        agent = create_plan_agent(TestModel(custom_output_args=draft.model_dump()))

        plan = await Planner(agent, today=_today).execute("service mesh", ResearchOptions())

        assert plan.queries == ["service mesh adoption", "istio vs linkerd"]
        assert plan.subtopics == ["adoption", "tooling"]
        assert plan.checkpoints == list(CHECKPOINTS)

    @pytest.mark.asyncio
    async def test__agent_failure__raises_planning_error(self) -> None:
        agent = AsyncMock()
        agent.run.side_effect = RuntimeError("model overloaded")

        with pytest.raises(PlanningError, match="model overloaded"):
            await Planner(agent).execute("service mesh", ResearchOptions())

    @pytest.mark.asyncio
    async def test__agent_blank_queries__raise_planning_error(self) -> None:
        agent = AsyncMock()
        agent.run.return_value = SimpleNamespace(output=PlanDraft(subtopics=["a"], queries=["   "]))

        with pytest.raises(PlanningError, match="no usable queries"):
            await Planner(agent).execute("service mesh", ResearchOptions())

    @pytest.mark.asyncio
    async def test__plan_model__is_resolved_when_planning(self) -> None:
        draft = PlanDraft(subtopics=["adoption"], queries=["service mesh adoption"])
        agent = create_plan_agent(TestModel(custom_output_args=draft.model_dump()))
        planner = Planner(plan_model="openai:gpt-4o", today=_today)

        with patch("researcher.stages.planner.get_plan_agent", return_value=agent) as get_agent:
            plan = await planner.execute("service mesh", ResearchOptions())

        get_agent.assert_called_once_with("openai:gpt-4o")
        assert plan.queries == ["service mesh adoption"]

    @pytest.mark.asyncio
    async def test__unusable_plan_model__raises_planning_error(self) -> None:
        planner = Planner(plan_model="nosuchprovider:model")

        with patch("researcher.stages.planner.get_plan_agent", side_effect=ValueError("Unknown model")):
            with pytest.raises(PlanningError, match="Unknown model"):
                await planner.execute("service mesh", ResearchOptions())
