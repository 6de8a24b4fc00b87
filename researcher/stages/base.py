"""Stage handler contracts shared by the orchestrator."""

from typing import Protocol, TypeVar, runtime_checkable

from researcher.models import PipelineState, StageKind

T = TypeVar("T")


@runtime_checkable
class Stage(Protocol):
    """One pipeline step: reads the state, returns it with its artifact set.

    Mandatory stages are retried and fail the run when they give up; the
    others must also implement ``DegradableStage``.
    """

    kind: StageKind
    mandatory: bool

    async def run(self, state: PipelineState) -> PipelineState: ...


@runtime_checkable
class DegradableStage(Stage, Protocol):
    def fallback(self, state: PipelineState) -> PipelineState:
        """State carrying a substitute artifact when ``run`` raised."""
        ...


def require(artifact: T | None, name: str) -> T:
    """Fetch a previous stage's artifact, failing loudly when it is missing."""
    if artifact is None:
        raise RuntimeError(f"Pipeline state has no {name}; the producing stage has not run")
    return artifact
