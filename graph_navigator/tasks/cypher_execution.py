"""
execute_cypher: run a query and canonicalise its records into GraphData.

Execution failures with a known signature get one LLM-assisted recovery
attempt. The correction is used only above the confidence threshold and
only if it actually differs from the failed query.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from graph_navigator.config import RECOVERY_CONFIDENCE_THRESHOLD
from graph_navigator.errors import CollaboratorUnavailableError, LLMResponseParseError, QueryExecutionError
from graph_navigator.graph.database import GraphSession
from graph_navigator.graph.formatting import extract_scalar_rows, format_graph_data
from graph_navigator.llm.parsing import parse_json_response, strip_code_fences
from graph_navigator.plan_models import StepResult
from graph_navigator.prompts.base_prompt import PromptSecurityError
from graph_navigator.prompts.repair_prompts import CypherRecoveryPrompt
from graph_navigator.tasks.context import TaskContext
from graph_navigator.tasks.cypher_validator import WRITE_CLAUSE, is_read_only, repair

logger = logging.getLogger("cypher_execution")

PATH_NODE_MISMATCH = "path_node_mismatch"

# Checked in order; the first matching signature wins
ERROR_SIGNATURES: List[Tuple[str, Tuple[re.Pattern, ...]]] = [
    (PATH_NODE_MISMATCH, (
        re.compile(r"expected\s+Path\s+but\s+was\s+(Node|Relationship)", re.IGNORECASE),
        re.compile(r"Invalid input '?(Node|Relationship)'? for argument at index 0 of function (relationships|nodes)\(\)", re.IGNORECASE),
        re.compile(r"Type mismatch: expected Path", re.IGNORECASE),
    )),
    ("variable_not_defined", (
        re.compile(r"Variable `?\w+`? not defined", re.IGNORECASE),
    )),
    ("unknown_function", (
        re.compile(r"Unknown function", re.IGNORECASE),
    )),
    ("syntax_error", (
        re.compile(r"Invalid input", re.IGNORECASE),
        re.compile(r"SyntaxError", re.IGNORECASE),
        re.compile(r"Neo\.ClientError\.Statement\.SyntaxError", re.IGNORECASE),
    )),
]


def classify_execution_error(message: str) -> Optional[str]:
    if not message:
        return None
    for error_type, patterns in ERROR_SIGNATURES:
        if any(pattern.search(message) for pattern in patterns):
            return error_type
    return None


def _unpack_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Accept a query string or a generate_cypher output mapping."""
    source = params.get("query")
    request: Dict[str, Any] = dict(source) if isinstance(source, dict) else {"query": source}
    query_params = params.get("queryParams") or params.get("params") or request.get("params") or {}
    return {
        "query": request.get("query") or "",
        "params": query_params if isinstance(query_params, dict) else {},
        "mode": request.get("mode"),
        "connectionStrategy": request.get("connectionStrategy"),
        "explanation": request.get("explanation"),
        "approximation_note": request.get("approximation_note"),
    }


def _result_output(records: List[Any], query: str, request: Dict[str, Any]) -> Dict[str, Any]:
    graph_data = format_graph_data(records)
    output = {
        "graphData": graph_data,
        "recordCount": len(records),
        "nodeCount": graph_data.node_count,
        "edgeCount": graph_data.edge_count,
        "query": query,
        "mode": request.get("mode"),
        "connectionStrategy": request.get("connectionStrategy"),
        "explanation": request.get("explanation"),
    }
    scalars = extract_scalar_rows(records)
    if scalars:
        output["scalars"] = scalars
    if request.get("approximation_note"):
        output["approximation_note"] = request["approximation_note"]
    return output


async def _propose_recovery(
    query: str,
    error: QueryExecutionError,
    error_type: str,
    ctx: TaskContext
) -> Optional[Dict[str, Any]]:
    """Ask the LLM for a corrected query. None when the proposal is unusable."""
    prompt = CypherRecoveryPrompt()
    try:
        response = await ctx.llm.generate_text(
            prompt.format_user_message(
                query=query,
                error_message=str(error),
                error_type=error_type,
                schema_description=ctx.schema.describe(),
            ),
            system_prompt=prompt.get_system_prompt(),
            temperature=0.1,
            max_tokens=600,
            deadline=ctx.deadline,
        )
        data = parse_json_response(response)
        prompt.validate_response_schema(data)
    except (LLMResponseParseError, PromptSecurityError, CollaboratorUnavailableError) as e:
        logger.warning(f"Recovery proposal unusable: {e}")
        return None

    confidence = float(data.get("confidence", 0))
    corrected = strip_code_fences(data["corrected_query"]).strip()
    if confidence <= RECOVERY_CONFIDENCE_THRESHOLD:
        logger.info(f"Recovery rejected: confidence {confidence:.2f} <= {RECOVERY_CONFIDENCE_THRESHOLD}")
        return None
    if corrected == query.strip():
        logger.info("Recovery rejected: corrected query is identical to the original")
        return None

    return {
        "corrected_query": corrected,
        "confidence": confidence,
        "explanation": data.get("explanation") or "",
        "changes": [str(change) for change in data.get("changes") or []],
    }


async def _run_with_recovery(
    session: GraphSession,
    query: str,
    request: Dict[str, Any],
    ctx: TaskContext
) -> StepResult:
    try:
        records = await session.run(query, request["params"], deadline=ctx.deadline)
        return StepResult.ok(_result_output(records, query, request))
    except QueryExecutionError as e:
        error = e

    error_type = classify_execution_error(str(error))
    logger.warning(f"Query failed ({error_type or 'unclassified'}): {error}")
    failure = StepResult.fail(
        f"Query execution failed: {error} (query: {query})",
        error_type=error_type or "query_failed",
    )
    if error_type is None:
        return failure

    proposal = await _propose_recovery(query, error, error_type, ctx)
    if proposal is None:
        return failure

    corrected = repair(proposal["corrected_query"]).text
    if not is_read_only(corrected):
        logger.warning("Recovery proposal contains a write clause, discarding it")
        return failure

    logger.info(f"Retrying with recovered query (confidence {proposal['confidence']:.2f}): {corrected}")
    try:
        records = await session.run(corrected, request["params"], deadline=ctx.deadline)
    except QueryExecutionError as retry_error:
        logger.error(f"Recovered query also failed: {retry_error}")
        return failure

    output = _result_output(records, corrected, request)
    output["auto_recovered"] = True
    output["recovery"] = {
        "original_query": query,
        "corrected_query": corrected,
        "explanation": proposal["explanation"],
        "changes": proposal["changes"],
        "confidence": proposal["confidence"],
        "error_type": error_type,
    }
    logger.info(f"Auto-recovery succeeded: {output['nodeCount']} nodes, {output['edgeCount']} edges")
    return StepResult.ok(output)


async def execute_cypher(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    request = _unpack_params(params)
    if not isinstance(request["query"], str) or not request["query"].strip():
        return StepResult.fail("execute_cypher requires a non-empty 'query'", error_type="invalid_params")

    repaired = repair(request["query"])
    query = repaired.text
    if any(defect.defect_class == WRITE_CLAUSE for defect in repaired.remaining_defects):
        return StepResult.fail("Only read-only queries can be executed", error_type="query_syntax_defect")

    logger.info(f"Executing Cypher: {query}")
    async with ctx.graph.session() as session:
        result = await _run_with_recovery(session, query, request, ctx)

    if result.success:
        logger.info(
            f"Query returned {result.output['recordCount']} records: "
            f"{result.output['nodeCount']} nodes, {result.output['edgeCount']} edges"
        )
    return result
