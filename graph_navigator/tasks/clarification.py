"""
clarify_with_user: ask the user a question, or end the clarification loop.

Terminal mode lists what the catalog actually contains and marks the
response as a final answer, so a conversation about an entity that does not
exist ends after a bounded number of round-trips.
"""
import logging
from typing import Any, Dict, List, Optional

from graph_navigator.errors import CollaboratorUnavailableError, QueryExecutionError
from graph_navigator.plan_models import StepResult
from graph_navigator.schema import GraphSchema
from graph_navigator.tasks.context import TaskContext

logger = logging.getLogger("clarification")

DEFAULT_MESSAGE = "I need more information to help you better."

DEFAULT_SUGGESTIONS = [
    "Show me all industries",
    "Find pain points in banking",
    "Compare sectors and departments",
    "Add a new project opportunity",
]

STATE_PHRASES = {
    "post_rejection": "No problem, let's try a different approach.",
    "meta_conversation": "Here is what I can help you with.",
    "repeated_failure": "I'm still having trouble finding that. Let's try something more specific.",
}

PERSISTENT_NON_EXISTENT = "persistent_non_existent"

PASSTHROUGH_FIELDS = ("alternative_approach", "helpful_guidance", "entity_issues", "corrected_entities")

FALLBACK_FINAL_MESSAGE = (
    "I couldn't load the current catalog right now. Our knowledge graph covers industries, their sectors, "
    "departments, pain points and AI project opportunities.\n\n"
    "What you can ask:\n"
    "- Show me all industries\n"
    "- Show me all sectors\n"
    "- Find pain points in a sector you're interested in"
)

MAX_LISTED_SECTORS = 8


def catalog_query(schema: GraphSchema) -> str:
    parent, child = schema.catalog_labels
    relationship = schema.catalog_relationship
    return f"""
MATCH (p:{parent})
OPTIONAL MATCH (p)-[:{relationship}]->(c:{child})
WITH p, collect(DISTINCT c.name) AS children
RETURN p.name AS parent, children
UNION
MATCH (c:{child})
WHERE NOT (:{parent})-[:{relationship}]->(c)
RETURN NULL AS parent, collect(DISTINCT c.name) AS children
"""


def _entity_issues(params: Dict[str, Any]) -> List[str]:
    issues = params.get("entity_issues") or []
    if isinstance(issues, str):
        issues = [issues]
    return [str(issue) for issue in issues if issue]


def _normal_clarification(params: Dict[str, Any]) -> Dict[str, Any]:
    message = params.get("message") or params.get("question") or DEFAULT_MESSAGE
    phrase = STATE_PHRASES.get(params.get("conversation_state"))
    if phrase:
        message = f"{phrase} {message}"

    suggestions = params.get("suggestions")
    if not isinstance(suggestions, list) or not suggestions:
        suggestions = list(DEFAULT_SUGGESTIONS)

    output = {
        "message": message,
        "suggestions": [str(s) for s in suggestions],
        "needsClarification": True,
    }
    for field in PASSTHROUGH_FIELDS:
        if params.get(field):
            output[field] = params[field]
    return output


def _catalog_from_records(records: List[Any]) -> Dict[str, List[str]]:
    catalog: Dict[str, List[str]] = {}
    unassigned: List[str] = []
    for record in records:
        children = [name for name in (record["children"] or []) if name]
        if record["parent"] is None:
            unassigned.extend(children)
        else:
            catalog[str(record["parent"])] = sorted(children)
    if unassigned:
        catalog["Other sectors"] = sorted(set(unassigned))
    return catalog


def _final_answer_message(catalog: Dict[str, List[str]], issues: List[str], schema: GraphSchema) -> str:
    parent_label = schema.catalog_labels[0]
    lines = []
    if issues:
        missing = ", ".join(f'"{issue}"' for issue in issues)
        lines.append(f"I couldn't find anything for {missing} in our database.")
        lines.append("")

    lines.append("Here's what IS available in our AI project catalog:")
    for parent, children in catalog.items():
        if children:
            shown = ", ".join(children[:MAX_LISTED_SECTORS])
            more = f" and {len(children) - MAX_LISTED_SECTORS} more" if len(children) > MAX_LISTED_SECTORS else ""
            lines.append(f"- {parent}: {shown}{more}")
        else:
            lines.append(f"- {parent}")

    lines.append("")
    lines.append("What you can ask:")
    lines.extend(f"- {suggestion}" for suggestion in _catalog_suggestions(catalog, parent_label))
    return "\n".join(lines)


def _catalog_suggestions(catalog: Dict[str, List[str]], parent_label: str) -> List[str]:
    parents = [name for name in catalog if name != "Other sectors"]
    suggestions = []
    if parents:
        suggestions.append(f"Show me all sectors in {parents[0]}")
    sectors = [child for children in catalog.values() for child in children]
    if sectors:
        suggestions.append(f"Find pain points in {sectors[0]}")
    if len(parents) >= 2:
        suggestions.append(f"Compare {parents[0]} and {parents[1]}")
    suggestions.append(f"Show me all {parent_label.lower()} categories")
    return suggestions


async def build_final_answer(ctx: TaskContext, entity_issues: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Terminal clarification listing the live catalog.

    Always returns the terminal flags, falling back to a fixed message when
    the catalog cannot be read.
    """
    issues = list(entity_issues or [])
    terminal = {
        "needsClarification": False,
        "isFinalAnswer": True,
        "terminatesClarificationLoop": True,
        "entity_issues": issues,
    }

    try:
        async with ctx.graph.session() as session:
            records = await session.run(catalog_query(ctx.schema), deadline=ctx.deadline)
    except (QueryExecutionError, CollaboratorUnavailableError) as e:
        logger.error(f"Catalog query failed, returning fallback final answer: {e}")
        return {
            **terminal,
            "message": FALLBACK_FINAL_MESSAGE,
            "suggestions": DEFAULT_SUGGESTIONS[:3],
            "availableData": {},
        }

    catalog = _catalog_from_records(records)
    if not catalog:
        logger.warning("Catalog query returned no entries, returning fallback final answer")
        return {
            **terminal,
            "message": FALLBACK_FINAL_MESSAGE,
            "suggestions": DEFAULT_SUGGESTIONS[:3],
            "availableData": {},
        }

    logger.info(f"Final answer lists {len(catalog)} catalog entries")
    return {
        **terminal,
        "message": _final_answer_message(catalog, issues, ctx.schema),
        "suggestions": _catalog_suggestions(catalog, ctx.schema.catalog_labels[0]),
        "availableData": catalog,
    }


def is_terminal_request(params: Dict[str, Any]) -> bool:
    return bool(params.get("provide_final_answer")) or params.get("conversation_state") == PERSISTENT_NON_EXISTENT


async def clarify_with_user(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    if is_terminal_request(params):
        logger.info("Providing final answer to end the clarification loop")
        return StepResult.ok(await build_final_answer(ctx, _entity_issues(params)))

    output = _normal_clarification(params)
    logger.info(f"Asking user for clarification: {output['message']}")
    return StepResult.ok(output)
