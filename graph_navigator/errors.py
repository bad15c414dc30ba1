"""
Exception taxonomy for planning, query synthesis and execution.

Each error is handled at the lowest layer able to recover from it:
plan errors fall back to a clarification plan, query defects go through
deterministic then LLM-assisted repair, and execution errors go through
classified recovery. Only what survives those layers reaches the
orchestrator's failure policy.
"""
from typing import Optional


class GraphNavigatorError(Exception):
    """Base class for all graph navigator errors."""
    pass


class PlanStructureError(GraphNavigatorError):
    """A generated plan is malformed."""

    def __init__(self, message: str, step_index: Optional[int] = None, field: Optional[str] = None):
        self.step_index = step_index
        self.field = field
        location = ""
        if step_index is not None:
            location = f" (step {step_index}"
            location += f", field '{field}')" if field else ")"
        elif field:
            location = f" (field '{field}')"
        super().__init__(f"{message}{location}")


class DependencyMissingError(GraphNavigatorError):
    """A step references the output of a step that never succeeded."""

    def __init__(self, step_number: int, referenced_step: int, reason: str = "did not succeed"):
        self.step_number = step_number
        self.referenced_step = referenced_step
        super().__init__(
            f"Step {step_number} depends on step {referenced_step}, which {reason}"
        )


class QuerySyntaxDefect(GraphNavigatorError):
    """A known defect class detected in generated query text."""

    def __init__(self, defect_class: str, detail: str):
        self.defect_class = defect_class
        self.detail = detail
        super().__init__(f"{defect_class}: {detail}")


class QueryExecutionError(GraphNavigatorError):
    """The graph database rejected or failed a query."""

    def __init__(self, message: str, query: str = "", code: Optional[str] = None):
        self.query = query
        self.code = code
        super().__init__(message)


class CollaboratorUnavailableError(GraphNavigatorError):
    """The LLM service or the graph database could not be reached in time."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator} unavailable: {message}")


class LLMResponseParseError(GraphNavigatorError):
    """LLM output could not be parsed into structured data."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)
