"""
generate_cypher: synthesize a read-only Cypher query for a goal.

Mode selection (first match wins):
- exploration_mode: static catalog query, no LLM call
- proxy_entity / external_company: approximate an outside subject
- exclusion / inclusion / analytics_type: existence analytics
- comparison / compare_entities: side-by-side data for 2+ entities
- multi_level / fallback_labels / levels: UNION over several labels
- otherwise: plain goal
"""
import logging
from typing import Any, Dict, List, Tuple

from graph_navigator.errors import LLMResponseParseError, QuerySyntaxDefect
from graph_navigator.llm.parsing import parse_json_response, parse_json_strict
from graph_navigator.plan_models import StepResult
from graph_navigator.prompts.base_prompt import PromptSecurityError
from graph_navigator.prompts.cypher_prompts import (
    CypherComparisonPrompt,
    CypherExistenceAnalyticsPrompt,
    CypherGoalPrompt,
    CypherMultiLevelPrompt,
    CypherPromptBase,
    CypherProxyEntityPrompt,
    render_params_hint,
)
from graph_navigator.tasks.context import TaskContext
from graph_navigator.tasks.cypher_validator import WRITE_CLAUSE, validate_and_fix

logger = logging.getLogger("cypher_generation")

MODE_GOAL = "goal"
MODE_PROXY = "proxy_entity"
MODE_EXISTENCE = "existence_analytics"
MODE_COMPARISON = "comparison"
MODE_MULTI_LEVEL = "multi_level"
MODE_EXPLORATION = "exploration"

EXPLORATION_QUERIES = {
    "Industry": (
        "MATCH (i:Industry) OPTIONAL MATCH (i)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s LIMIT 100",
        "All industries with their sectors",
    ),
    "Sector": (
        "MATCH (s:Sector) OPTIONAL MATCH (s)-[r]->(n) RETURN s, r, n LIMIT 100",
        "All sectors with their direct connections",
    ),
}
DEFAULT_EXPLORATION = ("MATCH (n)-[r]->(m) RETURN n, r, m LIMIT 50", "A sample of the graph")

STRICT_REMINDER = (
    "Your previous answer could not be parsed. Respond with ONLY the JSON object "
    '{"query": "...", "params": {}, "explanation": "...", "connectionStrategy": "..."}, '
    "no markdown, no commentary."
)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return [str(value)]


def select_mode(params: Dict[str, Any]) -> str:
    if params.get("exploration_mode"):
        return MODE_EXPLORATION
    if params.get("proxy_entity") or params.get("external_company"):
        return MODE_PROXY
    if params.get("exclusion") or params.get("inclusion") or params.get("analytics_type") in ("exclusion", "inclusion"):
        return MODE_EXISTENCE
    if (params.get("comparison") or params.get("compare_entities")) and len(_as_list(params.get("entities"))) >= 2:
        return MODE_COMPARISON
    if params.get("multi_level") or params.get("fallback_labels") or params.get("levels"):
        return MODE_MULTI_LEVEL
    return MODE_GOAL


def exploration_query(params: Dict[str, Any]) -> Dict[str, Any]:
    focus = params.get("focus") or params.get("entity_type")
    query, explanation = EXPLORATION_QUERIES.get(focus, DEFAULT_EXPLORATION)
    return {
        "query": query,
        "params": {},
        "explanation": explanation,
        "connectionStrategy": "catalog exploration",
    }


def _build_prompt(mode: str, params: Dict[str, Any], ctx: TaskContext) -> Tuple[CypherPromptBase, Dict[str, Any]]:
    common = {
        "goal": params.get("goal"),
        "schema_description": ctx.schema.describe(),
        "entities": _as_list(params.get("entities")),
        "context": params.get("context"),
    }

    if mode == MODE_PROXY:
        subject = params.get("proxy_entity") or params.get("external_company")
        if not isinstance(subject, str):
            subject = str(subject)
        return CypherProxyEntityPrompt(), {**common, "proxy_subject": subject}

    if mode == MODE_EXISTENCE:
        analytics_type = params.get("analytics_type")
        if analytics_type not in ("exclusion", "inclusion"):
            analytics_type = "exclusion" if params.get("exclusion") else "inclusion"
        return CypherExistenceAnalyticsPrompt(), {
            **common,
            "analytics_type": analytics_type,
            "relationship": params.get("relationship"),
            "target_label": params.get("target_label"),
        }

    if mode == MODE_COMPARISON:
        return CypherComparisonPrompt(), common

    if mode == MODE_MULTI_LEVEL:
        requested = _as_list(params.get("levels") or params.get("fallback_labels"))
        levels = [label for label in requested if ctx.schema.has_label(label)]
        if not levels:
            levels = list(ctx.schema.catalog_labels)
        return CypherMultiLevelPrompt(), {**common, "levels": levels}

    return CypherGoalPrompt(), common


async def _synthesize(
    prompt: CypherPromptBase,
    message: str,
    ctx: TaskContext
) -> Dict[str, Any]:
    """
    One LLM call, strict parse; on failure one re-ask parsed leniently.

    Raises:
        LLMResponseParseError: Both attempts produced unusable output
        CollaboratorUnavailableError: The LLM could not be reached
    """
    system_prompt = prompt.get_system_prompt()
    response = await ctx.llm.generate_text(
        message, system_prompt=system_prompt, temperature=0.1, max_tokens=500, deadline=ctx.deadline
    )
    try:
        data = parse_json_strict(response)
        prompt.validate_response_schema(data)
        return data
    except (LLMResponseParseError, PromptSecurityError) as e:
        logger.warning(f"Query synthesis response rejected, re-asking once: {e}")

    response = await ctx.llm.generate_text(
        f"{message}\n\n{STRICT_REMINDER}",
        system_prompt=system_prompt,
        temperature=0.1,
        max_tokens=500,
        deadline=ctx.deadline,
    )
    data = parse_json_response(response)
    try:
        prompt.validate_response_schema(data)
    except PromptSecurityError as e:
        raise LLMResponseParseError(str(e), raw_response=response) from e
    return data


async def generate_cypher(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    goal = params.get("goal")
    mode = select_mode(params)

    if mode == MODE_EXPLORATION:
        result = exploration_query(params)
        logger.info(f"Exploration query selected: {result['query']}")
        return StepResult.ok({**result, "mode": mode, "was_auto_fixed": False, "fixes": []})

    if not isinstance(goal, str) or not goal.strip():
        return StepResult.fail("generate_cypher requires a non-empty 'goal'", error_type="invalid_params")

    logger.info(f"Generating Cypher ({mode}) for goal: {goal}")
    logger.debug(f"Synthesis params: {render_params_hint(params)}")

    prompt, arguments = _build_prompt(mode, params, ctx)
    try:
        message = prompt.format_user_message(**arguments)
        data = await _synthesize(prompt, message, ctx)
    except PromptSecurityError as e:
        logger.warning(f"Query synthesis prompt rejected: {e}")
        return StepResult.fail(f"Could not build the query request: {e}", error_type="prompt_security")
    except LLMResponseParseError as e:
        logger.error(f"Query synthesis failed after retry: {e}")
        return StepResult.fail(
            "Could not generate a query for this request", error_type="synthesis_failed"
        )

    candidate: Dict[str, Any] = {
        "query": data["query"].strip(),
        "params": data.get("params") or {},
        "explanation": data.get("explanation") or "",
        "connectionStrategy": data.get("connectionStrategy") or data.get("connection_strategy") or "",
        "mode": mode,
    }
    if mode == MODE_PROXY:
        candidate["approximation_note"] = data.get("approximation_note")

    fixed = await validate_and_fix(candidate, llm=ctx.llm, schema=ctx.schema, deadline=ctx.deadline)
    if WRITE_CLAUSE in fixed["remaining_defects"]:
        defect = QuerySyntaxDefect(WRITE_CLAUSE, "generated query modifies the graph")
        logger.error(f"Rejected generated query: {defect}")
        return StepResult.fail(str(defect), error_type="query_syntax_defect")

    logger.info(f"Generated Cypher: {fixed['query']}")
    return StepResult.ok(fixed)
