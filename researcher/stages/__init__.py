"""Pipeline stage handlers, in execution order."""

from researcher.stages.base import DegradableStage, Stage
from researcher.stages.enrichment import Enricher, prioritize, priority_score
from researcher.stages.planner import Planner, template_plan
from researcher.stages.searcher import DEFAULT_SEARCH_PROVIDERS, Searcher, SearchProvider
from researcher.stages.writer import Writer, sanitize_topic

__all__ = [
    # Contracts
    "Stage",
    "DegradableStage",
    # Planning
    "Planner",
    "template_plan",
    # Search
    "Searcher",
    "SearchProvider",
    "DEFAULT_SEARCH_PROVIDERS",
    # Enrichment
    "Enricher",
    "prioritize",
    "priority_score",
    # Writing
    "Writer",
    "sanitize_topic",
]
