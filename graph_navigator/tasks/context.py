from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from graph_navigator.deadline import Deadline
from graph_navigator.graph.database import GraphDatabaseClient
from graph_navigator.llm.client import LLMClient
from graph_navigator.plan_models import StepResult
from graph_navigator.schema import GraphSchema


@dataclass(frozen=True)
class TaskContext:
    """Collaborators and limits shared by every task of one run."""
    llm: LLMClient
    graph: GraphDatabaseClient
    schema: GraphSchema
    deadline: Optional[Deadline] = None


TaskHandler = Callable[[Dict[str, Any], TaskContext], Awaitable[StepResult]]
