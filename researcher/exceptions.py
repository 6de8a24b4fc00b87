"""Domain-specific exceptions for research pipeline."""


class ResearchPipelineError(Exception):
    """Base exception for research pipeline errors."""


class InvalidResearchInputError(ResearchPipelineError):
    """Raised when a topic or its options are rejected before any stage runs."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid research input: {reason}")


class CapabilityUnavailableError(ResearchPipelineError):
    """Raised when a required tool capability is not registered or not configured."""

    def __init__(self, capability: str, reason: str = "not registered") -> None:
        self.capability = capability
        self.reason = reason
        super().__init__(f"Capability '{capability}' is unavailable: {reason}")


class PlanningError(ResearchPipelineError):
    """Raised when research plan creation fails."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Failed to create research plan for '{topic}': {reason}")


class SearchError(ResearchPipelineError):
    """Raised when the search stage cannot produce candidates."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Search failed: {reason}")


class NoSearchProviderAvailableError(SearchError):
    """Raised when every provider failed or returned nothing for every query."""

    def __init__(self, providers: list[str], errors: list[str]) -> None:
        self.providers = providers
        self.errors = errors
        names = ", ".join(providers) or "none configured"
        detail = "; ".join(errors[-3:]) if errors else "no results"
        super().__init__(
            f"No search provider available: all providers ({names}) failed or returned no results. "
            f"Last errors: {detail}"
        )


class WritingError(ResearchPipelineError):
    """Raised when the research report cannot be produced."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to write research report: {reason}")


class StageFailedError(ResearchPipelineError):
    """Raised when a mandatory stage exhausts its retry budget."""

    def __init__(self, stage: str, attempts: int, last_error: BaseException) -> None:
        self.stage = stage
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Stage '{stage}' failed after {attempts} attempt(s): {last_error}")


class ToolCallError(ResearchPipelineError):
    """Raised by tool backends, or when unwrapping a failed tool call result."""

    def __init__(self, capability: str, operation: str, reason: str) -> None:
        self.capability = capability
        self.operation = operation
        self.reason = reason
        super().__init__(f"{capability}.{operation} failed: {reason}")
