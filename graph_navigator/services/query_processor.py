import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from graph_navigator.config import PLAN_DEADLINE_SECONDS
from graph_navigator.deadline import Deadline
from graph_navigator.graph.database import GraphDatabaseClient
from graph_navigator.llm.client import LLMClient
from graph_navigator.orchestration.orchestrator import Orchestrator
from graph_navigator.orchestration.planner_agent import ExecutionPlanner
from graph_navigator.schema import DEFAULT_SCHEMA, GraphSchema
from graph_navigator.security.prompt_validator import validate_user_prompt

logger = logging.getLogger("graph_navigator")

MAX_QUERY_LENGTH = 5000


class ChatMessage(BaseModel):
    type: str
    content: str


class ChatRequest(BaseModel):
    query: str
    history: List[ChatMessage] = Field(default_factory=list)

    @field_validator('query')
    @classmethod
    def validate_query(cls, v):
        if not v or not v.strip():
            raise ValueError('Query cannot be empty')

        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f'Query too long (max {MAX_QUERY_LENGTH} characters)')

        is_safe, error_msg = validate_user_prompt(v)
        if not is_safe:
            raise ValueError(error_msg)

        return v


class QueryProcessor:
    """
    Plans and executes one chat request.

    Collaborators are created once and shared across requests; each request
    gets its own deadline, plan and execution state.
    """

    def __init__(
        self,
        planner: Optional[ExecutionPlanner] = None,
        orchestrator: Optional[Orchestrator] = None,
        llm: Optional[LLMClient] = None,
        graph: Optional[GraphDatabaseClient] = None,
        schema: GraphSchema = DEFAULT_SCHEMA,
        deadline_seconds: float = PLAN_DEADLINE_SECONDS
    ):
        self.llm = llm or LLMClient()
        self.graph = graph or GraphDatabaseClient()
        self.planner = planner or ExecutionPlanner(self.llm, schema)
        self.orchestrator = orchestrator or Orchestrator(self.llm, self.graph, schema)
        self.deadline_seconds = deadline_seconds

    async def process(self, request: ChatRequest) -> Dict[str, Any]:
        """
        Returns:
            FinalResult serialised with camelCase keys and nulls removed
        """
        history = [message.model_dump() for message in request.history]
        deadline = Deadline(self.deadline_seconds)

        try:
            plan = await self.planner.generate(request.query, history, deadline=deadline)
            result = await self.orchestrator.execute(plan, history, deadline=deadline)
            return result.to_response()
        except Exception as error:
            logger.exception(f"Query processing failed: {error}")
            return self._create_error_response("Processing failed")

    def _create_error_response(self, error_type: str) -> Dict[str, Any]:
        return {
            "success": False,
            "error": error_type,
            "message": "Something went wrong while processing your request. Please try again.",
        }

    async def close(self) -> None:
        await self.graph.close()
