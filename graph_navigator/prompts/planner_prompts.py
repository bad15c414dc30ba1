import hashlib
import logging
from typing import Any, Dict, List

from graph_navigator.errors import PlanStructureError
from graph_navigator.plan_models import TASK_CATALOG
from graph_navigator.prompts.base_prompt import SecurePromptTemplate, PromptSecurityError
from graph_navigator.security.prompt_validator import validate_user_prompt

logger = logging.getLogger("planner_prompts")


def _render_catalog() -> str:
    return "\n".join(
        f"{number}. {task.value}\n   - {description}"
        for number, (task, description) in enumerate(TASK_CATALOG.items(), start=1)
    )


class PlannerPrompt(SecurePromptTemplate):
    """
    Secure prompt template for the execution planner.

    Turns a natural-language question about the graph into an ordered list
    of task invocations with explicit failure policies.
    """

    TEMPLATE = f"""You are the execution planner for a knowledge graph assistant. Break the user's request
into an ordered list of tasks. Later tasks may use the output of earlier tasks.

Available Tasks:

{_render_catalog()}

PLANNING RULES:

1. **Order**: Steps run strictly in the order given, one at a time
2. **References**: Use "$stepN.output" to pass the output of step N to a later step, or
   "$stepN.output.field" for one field of it. Only reference earlier steps
3. **Failure policy**: Every step has on_failure:
   - "clarify_and_halt": stop and ask the user (use for validation and query generation)
   - "continue": record the failure and carry on (use for optional enrichment)
   - "retry": try the step once more, then carry on
4. **Reasoning**: Every step needs a short, non-empty reasoning string
5. **Validation**: When the request names a specific industry, sector or other entity that may not
   exist, start with validate_entity using clarify_and_halt
6. **Queries**: Retrieve data with generate_cypher followed by execute_cypher("$stepN.output")
7. **Loops**: If the chat history shows the assistant already asked for clarification about the same
   missing entity, do not ask again; use clarify_with_user with provide_final_answer=true
8. **Vague requests**: Use a single clarify_with_user step

EXAMPLES:

Request: "Show me all Banking sectors"
{{"plan": [
  {{"task_type": "generate_cypher", "params": {{"goal": "list sectors under Banking industry", "entities": ["Banking"]}}, "on_failure": "clarify_and_halt", "reasoning": "Build the query for Banking sectors"}},
  {{"task_type": "execute_cypher", "params": {{"query": "$step1.output"}}, "on_failure": "clarify_and_halt", "reasoning": "Run the generated query"}}
]}}

Request: "What pain points does Agriculture have?"
{{"plan": [
  {{"task_type": "validate_entity", "params": {{"entity_type": "Agriculture"}}, "on_failure": "clarify_and_halt", "reasoning": "Agriculture may not exist in the graph"}},
  {{"task_type": "generate_cypher", "params": {{"goal": "pain points experienced by sectors of the Agriculture industry", "entities": ["Agriculture"]}}, "on_failure": "clarify_and_halt", "reasoning": "Build the pain point query"}},
  {{"task_type": "execute_cypher", "params": {{"query": "$step2.output"}}, "on_failure": "clarify_and_halt", "reasoning": "Run the generated query"}}
]}}

Request: "Compare Retail Banking and Commercial Banking pain points"
{{"plan": [
  {{"task_type": "generate_cypher", "params": {{"goal": "pain points of Retail Banking and Commercial Banking", "entities": ["Retail Banking", "Commercial Banking"], "comparison": true}}, "on_failure": "clarify_and_halt", "reasoning": "Comparison query for both sectors"}},
  {{"task_type": "execute_cypher", "params": {{"query": "$step1.output"}}, "on_failure": "clarify_and_halt", "reasoning": "Fetch the data"}},
  {{"task_type": "analyze_and_summarize", "params": {{"dataset": "$step2.output", "analysis_goal": "compare the pain points of both sectors"}}, "on_failure": "continue", "reasoning": "Narrative comparison on top of the graph"}}
]}}

OUTPUT FORMAT:
Return ONLY valid JSON: {{"plan": [{{"task_type": "...", "params": {{...}}, "on_failure": "...", "reasoning": "..."}}]}}
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    STRICT_JSON_REMINDER = (
        "Your previous answer could not be parsed. Respond with ONLY the JSON object "
        '{"plan": [...]}, no markdown, no commentary.'
    )

    MAX_HISTORY_ENTRY_LENGTH = 1000

    def validate_response_schema(self, data: dict) -> bool:
        """
        Check the top-level plan shape. Per-step rules are enforced when the
        plan model is built.

        Raises:
            PlanStructureError: If the plan list is missing or empty
        """
        if not isinstance(data, dict):
            raise PlanStructureError("Planner response must be a JSON object")
        plan = data.get("plan", data.get("steps"))
        if not isinstance(plan, list) or not plan:
            raise PlanStructureError("Plan must contain a non-empty step list", field="plan")
        return True

    def _render_history(self, history: List[Dict[str, Any]]) -> str:
        lines = []
        for entry in history:
            role = str(entry.get("type", "user"))
            content = str(entry.get("content", ""))[:self.MAX_HISTORY_ENTRY_LENGTH]
            if role == "user":
                is_safe, error_msg = validate_user_prompt(content)
                if not is_safe:
                    logger.warning(f"Dropping history entry from planner context: {error_msg}")
                    continue
            lines.append(f"[{role}] {content}")
        return "\n".join(lines) if lines else "(no previous messages)"

    def _format_message(
        self,
        user_query: str,
        history: List[Dict[str, Any]],
        schema_description: str,
        strict: bool = False
    ) -> str:
        """
        Format the planner user message.

        The current query is screened for injection; history entries from the
        user are screened individually and dropped if unsafe.

        Raises:
            PromptSecurityError: If the query is empty, too long or malicious
        """
        if not user_query or not isinstance(user_query, str):
            raise PromptSecurityError("user_query must be a non-empty string")
        if len(user_query) > 5000:
            raise PromptSecurityError("user_query exceeds maximum length (5000 chars)")

        schema_section = self.build_data_section("GRAPH_SCHEMA", schema_description, header="Graph Schema")
        history_section = self.build_data_section(
            "CHAT_HISTORY", self._render_history(history), header="Recent Conversation"
        )
        query_section = self.build_user_section("USER_QUERY", user_query, header="Current Request")

        reminder = f"\n{self.STRICT_JSON_REMINDER}\n" if strict else ""

        return f"""Create an execution plan for this request:

{schema_section}

{history_section}

{query_section}
{reminder}
Generate the execution plan now:
"""
