"""
validate_entity: resolve a name against the schema, then against live data.

Tiers:
1. Exact, case-sensitive membership in the label catalog (no database call)
2. Exact, case-insensitive name/title match in the data
3. Fuzzy containment match in the data, scored by entity_similarity()

Tiers 2 and 3 share one read: the containment query also flags exact hits
and orders them first.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from graph_navigator.config import FUZZY_MATCH_THRESHOLD
from graph_navigator.errors import CollaboratorUnavailableError, QueryExecutionError
from graph_navigator.graph.formatting import entity_properties
from graph_navigator.plan_models import StepResult
from graph_navigator.schema import SimilarityRule
from graph_navigator.tasks.context import TaskContext

logger = logging.getLogger("entity_resolver")

ENTITY_MATCH_QUERY = """
MATCH (n)
WHERE toLower(n.name) CONTAINS toLower($entity)
   OR toLower(n.title) CONTAINS toLower($entity)
   OR any(label IN labels(n) WHERE toLower(label) CONTAINS toLower($entity))
WITH n,
     (coalesce(toLower(n.name) = toLower($entity), false)
      OR coalesce(toLower(n.title) = toLower($entity), false)) AS exact
RETURN n, labels(n) AS labels, coalesce(n.name, n.title, labels(n)[0]) AS matched_field, exact
ORDER BY exact DESC
LIMIT 10
"""

MAX_SCORED_MATCHES = 5
MAX_DATA_SUGGESTIONS = 3
SHORT_STRING_LENGTH = 20


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def entity_similarity(entity: str, candidate: str, rules: Sequence[SimilarityRule] = ()) -> float:
    """
    Composite similarity in [0.0, 1.0].

    containment 0.7, shared-token ratio 0.5, edit distance on short
    strings 0.3, curated domain fragment 0.4; the sum is capped at 1.0.
    """
    query = (entity or "").lower().strip()
    target = (candidate or "").lower().strip()
    if not query or not target:
        return 0.0
    if query == target:
        return 1.0

    score = 0.0
    if query in target or target in query:
        score += 0.7

    query_words = query.split()
    target_words = target.split()
    common = [
        word for word in query_words
        if any(word in other or other in word for other in target_words)
    ]
    score += len(common) / max(len(query_words), len(target_words)) * 0.5

    if len(query) <= SHORT_STRING_LENGTH and len(target) <= SHORT_STRING_LENGTH:
        max_len = max(len(query), len(target))
        score += (max_len - levenshtein(query, target)) / max_len * 0.3

    for rule in rules:
        if rule.fragment in query and any(expansion in target for expansion in rule.expansions):
            score += 0.4
            break

    return min(score, 1.0)


def _resolution(
    entity: str,
    valid: bool,
    confidence: float,
    match_type: str,
    entity_type: Optional[str] = None,
    exists_in_schema: bool = False,
    exists_in_data: Optional[bool] = None,
    sample_data: Optional[List[Dict[str, Any]]] = None,
    suggested_entities: Optional[List[str]] = None,
    suggestion_reason: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "entity": entity,
        "valid": valid,
        "entity_type": entity_type or entity,
        "exists_in_schema": exists_in_schema,
        "exists_in_data": exists_in_data,
        "confidence": round(confidence, 3),
        "match_type": match_type,
        "sample_data": sample_data or [],
        "suggested_entities": suggested_entities or [],
        "suggestion_reason": suggestion_reason,
    }


def _sample(record: Any) -> Dict[str, Any]:
    properties = entity_properties(record["n"])
    return {
        "name": properties.get("name") or properties.get("title"),
        "labels": list(record["labels"] or []),
    }


async def validate_entity(params: Dict[str, Any], ctx: TaskContext) -> StepResult:
    """
    Resolve params['entity_type'] and report validity with a confidence.

    Database failures are reported as a failed result with confidence 0.0,
    never raised.
    """
    entity = params.get("entity_type") or params.get("entity")
    if not isinstance(entity, str) or not entity.strip():
        return StepResult.fail("validate_entity requires a non-empty 'entity_type'", error_type="invalid_params")
    entity = entity.strip()

    # Tier 1
    if ctx.schema.has_label(entity):
        logger.info(f"Entity '{entity}' is a schema label")
        return StepResult.ok(_resolution(
            entity, valid=True, confidence=1.0, match_type="schema",
            entity_type=entity, exists_in_schema=True,
        ))

    try:
        async with ctx.graph.session() as session:
            records = await session.run(ENTITY_MATCH_QUERY, {"entity": entity}, deadline=ctx.deadline)
    except (QueryExecutionError, CollaboratorUnavailableError) as e:
        logger.error(f"Entity validation query failed for '{entity}': {e}")
        return StepResult.fail(
            f"Could not validate '{entity}': {e}",
            output=_resolution(entity, valid=False, confidence=0.0, match_type="none"),
            error_type="collaborator_unavailable" if isinstance(e, CollaboratorUnavailableError) else "query_failed",
        )

    # Tier 2
    exact = [record for record in records if record["exact"]]
    if exact:
        labels = list(exact[0]["labels"] or [])
        logger.info(f"Entity '{entity}' matched exactly in data as {labels}")
        return StepResult.ok(_resolution(
            entity, valid=True, confidence=1.0, match_type="exact",
            entity_type=labels[0] if labels else entity,
            exists_in_data=True,
            sample_data=[_sample(record) for record in exact[:MAX_SCORED_MATCHES]],
        ))

    # Tier 3
    if records:
        scored = sorted(
            (
                (entity_similarity(entity, str(record["matched_field"]), ctx.schema.similarity_rules), record)
                for record in records
            ),
            key=lambda pair: pair[0],
            reverse=True,
        )[:MAX_SCORED_MATCHES]
        best_score, best_record = scored[0]
        suggestions = list(dict.fromkeys(str(record["matched_field"]) for _, record in scored))[:MAX_DATA_SUGGESTIONS]
        valid = best_score > FUZZY_MATCH_THRESHOLD
        labels = list(best_record["labels"] or [])

        logger.info(f"Entity '{entity}' fuzzy best score {best_score:.3f} ({'valid' if valid else 'invalid'})")
        resolution = _resolution(
            entity, valid=valid, confidence=best_score, match_type="fuzzy",
            entity_type=labels[0] if labels and valid else entity,
            exists_in_data=valid,
            sample_data=[_sample(record) for _, record in scored],
            suggested_entities=suggestions,
            suggestion_reason=f"Similar names found in the data for '{entity}'",
        )
        if valid:
            return StepResult.ok(resolution)
        return StepResult.fail(
            f"'{entity}' was not found. Did you mean: {', '.join(suggestions)}?",
            output=resolution,
            error_type="entity_not_found",
        )

    # No match at all
    suggestions = ctx.schema.suggestions_for(entity)
    logger.info(f"Entity '{entity}' not found; suggesting {suggestions}")
    return StepResult.fail(
        f"'{entity}' was not found in the graph",
        output=_resolution(
            entity, valid=False, confidence=0.0, match_type="none",
            exists_in_data=False,
            suggested_entities=suggestions,
            suggestion_reason="Closest catalog entries for the requested term",
        ),
        error_type="entity_not_found",
    )
