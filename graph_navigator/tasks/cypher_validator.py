"""
Static detection and repair of known defects in generated Cypher.

Defect classes:
- path_function_on_entity: relationships()/nodes()/length() called on a
  variable bound as a node or relationship instead of a path
- prohibited_quoting: double-quoted string literals
- unreturned_relationship: the pattern has relationships but RETURN only
  projects bare nodes (detected here, repaired by the LLM review)
- write_clause: CREATE/MERGE/DELETE/SET/REMOVE/DROP (never repaired)

repair() is heuristic and best-effort. A defect it cannot fix is left in
place and reported in remaining_defects; the executor's classified recovery
is the next line of defence.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from graph_navigator.deadline import Deadline
from graph_navigator.errors import CollaboratorUnavailableError, LLMResponseParseError
from graph_navigator.llm.client import LLMClient
from graph_navigator.llm.parsing import parse_json_response, strip_code_fences
from graph_navigator.prompts.base_prompt import PromptSecurityError
from graph_navigator.prompts.repair_prompts import CypherReviewPrompt
from graph_navigator.schema import DEFAULT_SCHEMA, GraphSchema

logger = logging.getLogger("cypher_validator")

PATH_FUNCTION_ON_ENTITY = "path_function_on_entity"
PROHIBITED_QUOTING = "prohibited_quoting"
UNRETURNED_RELATIONSHIP = "unreturned_relationship"
WRITE_CLAUSE = "write_clause"

MAX_REPAIR_PASSES = 10

PATH_BINDING = re.compile(r"(?<![.\w])(\w+)\s*=\s*(?:shortestPath|allShortestPaths)?\s*\(", re.IGNORECASE)
NODE_BINDING = re.compile(r"(?<![\w.])\(\s*(\w+)\s*(?=[:){])")
REL_BINDING = re.compile(r"-\s*\[\s*(\w+)\s*(?=[:\]{*|])")
PATH_FUNCTION = re.compile(r"\b(relationships|nodes|length)\s*\(\s*(\w+)\s*\)", re.IGNORECASE)
WRITE_KEYWORDS = re.compile(r"\b(CREATE|MERGE|DELETE|DETACH|SET|REMOVE|DROP)\b", re.IGNORECASE)
MATCH_KEYWORD = re.compile(r"\b(?:OPTIONAL\s+)?MATCH\s+", re.IGNORECASE)
CLAUSE_BOUNDARY = re.compile(
    r"\b(WHERE|RETURN|WITH|MATCH|OPTIONAL|UNWIND|ORDER|CALL|UNION|LIMIT|SKIP)\b", re.IGNORECASE
)
RETURN_CLAUSE = re.compile(r"\bRETURN\b(.*?)(?=\bUNION\b|\bORDER\b|\bLIMIT\b|\bSKIP\b|$)", re.IGNORECASE | re.DOTALL)
IDENTIFIER = re.compile(r"\b[A-Za-z_]\w*\b")


class CypherDefect(BaseModel):
    defect_class: str
    detail: str
    variable: Optional[str] = None
    function: Optional[str] = None
    repairable: bool = True


class RepairNote(BaseModel):
    before: str
    after: str
    reason: str


class RepairedQuery(BaseModel):
    text: str
    was_changed: bool = False
    notes: List[RepairNote] = Field(default_factory=list)
    remaining_defects: List[CypherDefect] = Field(default_factory=list)


# ============================================================================
# Lexical helpers
# ============================================================================

def _literal_spans(query: str) -> List[Tuple[int, int, str]]:
    """(open, close, quote) offsets of every string literal."""
    spans = []
    i = 0
    length = len(query)
    while i < length:
        char = query[i]
        if char in ("'", '"'):
            start = i
            i += 1
            while i < length and query[i] != char:
                if query[i] == "\\":
                    i += 1
                i += 1
            spans.append((start, min(i, length - 1), char))
        i += 1
    return spans


def _mask_literals(query: str) -> str:
    """Blank out literal contents, keeping every offset intact."""
    chars = list(query)
    for start, end, _ in _literal_spans(query):
        for i in range(start + 1, end):
            chars[i] = " "
    return "".join(chars)


def _apply_edits(text: str, edits: List[Tuple[int, int, str]]) -> str:
    for start, end, replacement in sorted(edits, key=lambda edit: edit[0], reverse=True):
        text = text[:start] + replacement + text[end:]
    return text


def is_read_only(query: str) -> bool:
    return not WRITE_KEYWORDS.search(_mask_literals(query or ""))


class _Bindings:
    """Variables bound in a query, by kind."""

    def __init__(self, masked: str):
        self.paths: Set[str] = {m.group(1) for m in PATH_BINDING.finditer(masked)}
        self.nodes: Set[str] = {m.group(1) for m in NODE_BINDING.finditer(masked)} - self.paths
        self.relationships: Set[str] = {m.group(1) for m in REL_BINDING.finditer(masked)} - self.paths
        self.identifiers: Set[str] = set(IDENTIFIER.findall(masked))

    def fresh_name(self, base: str) -> str:
        name = base
        suffix = 2
        while name in self.identifiers:
            name = f"{base}_{suffix}"
            suffix += 1
        self.identifiers.add(name)
        return name


# ============================================================================
# Detection
# ============================================================================

def detect_defects(query: str) -> List[CypherDefect]:
    if not query:
        return []

    masked = _mask_literals(query)
    bindings = _Bindings(masked)
    defects: List[CypherDefect] = []

    for match in WRITE_KEYWORDS.finditer(masked):
        defects.append(CypherDefect(
            defect_class=WRITE_CLAUSE,
            detail=f"write clause '{match.group(1).upper()}' is not allowed",
            repairable=False,
        ))
        break

    if any(quote == '"' for _, _, quote in _literal_spans(query)):
        defects.append(CypherDefect(defect_class=PROHIBITED_QUOTING, detail="double-quoted string literal"))

    for match in PATH_FUNCTION.finditer(masked):
        function, variable = match.group(1).lower(), match.group(2)
        if variable in bindings.paths:
            continue
        if variable in bindings.nodes or variable in bindings.relationships:
            kind = "node" if variable in bindings.nodes else "relationship"
            defects.append(CypherDefect(
                defect_class=PATH_FUNCTION_ON_ENTITY,
                detail=f"{function}({variable}) applied to {kind} variable '{variable}'",
                variable=variable,
                function=function,
            ))

    if "-[" in masked.replace(" ", "") and MATCH_KEYWORD.search(masked):
        returned = set()
        for match in RETURN_CLAUSE.finditer(masked):
            returned.update(IDENTIFIER.findall(match.group(1)))
        if (
            returned & bindings.nodes
            and not returned & (bindings.relationships | bindings.paths)
        ):
            defects.append(CypherDefect(
                defect_class=UNRETURNED_RELATIONSHIP,
                detail="RETURN projects nodes without their relationships",
                repairable=False,
            ))

    return defects


# ============================================================================
# Deterministic repair
# ============================================================================

def _fix_quoting(query: str) -> Tuple[str, List[RepairNote]]:
    edits = []
    notes = []
    for start, end, quote in _literal_spans(query):
        if quote != '"':
            continue
        content = query[start + 1:end].replace('\\"', '"')
        content = re.sub(r"(?<!\\)'", lambda _: "\\'", content)
        before = query[start:end + 1]
        after = f"'{content}'"
        edits.append((start, end + 1, after))
        notes.append(RepairNote(before=before, after=after, reason="double-quoted literal rewritten with single quotes"))
    return _apply_edits(query, edits), notes


def _call_spans(masked: str, function: str, variable: str) -> List[Tuple[int, int]]:
    pattern = re.compile(rf"\b{function}\s*\(\s*{re.escape(variable)}\s*\)", re.IGNORECASE)
    return [(m.start(), m.end()) for m in pattern.finditer(masked)]


def _incoming_hop(masked: str, variable: str) -> Optional[re.Match]:
    """A single-hop relationship pattern whose target node is the variable."""
    pattern = re.compile(rf"-\s*\[([^\]]*)\]\s*-\s*>?\s*\(\s*{re.escape(variable)}\b")
    for match in pattern.finditer(masked):
        if "*" not in match.group(1):
            return match
    return None


def _pattern_parts(masked: str, start: int, end: int) -> List[Tuple[int, int]]:
    """Split a MATCH body on top-level commas."""
    parts = []
    depth = 0
    part_start = start
    for i in range(start, end):
        char = masked[i]
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append((part_start, i))
            part_start = i + 1
    parts.append((part_start, end))
    return parts


def _bind_path(
    masked: str,
    variable: str,
    bindings: _Bindings
) -> Optional[Tuple[str, List[Tuple[int, int, str]]]]:
    """
    Find the MATCH pattern containing the variable and bind a path on it.

    Returns the path variable and the edit that introduces it (no edit when
    the pattern already has a path binding).
    """
    node_pattern = re.compile(rf"\(\s*{re.escape(variable)}\b")
    for keyword in MATCH_KEYWORD.finditer(masked):
        body_start = keyword.end()
        boundary = CLAUSE_BOUNDARY.search(masked, body_start)
        body_end = boundary.start() if boundary else len(masked)
        for part_start, part_end in _pattern_parts(masked, body_start, body_end):
            part = masked[part_start:part_end]
            if not node_pattern.search(part):
                continue
            existing = re.match(r"\s*(\w+)\s*=", part)
            if existing:
                return existing.group(1), []
            offset = part_start + (len(part) - len(part.lstrip()))
            path_variable = bindings.fresh_name(f"p_{variable}")
            return path_variable, [(offset, offset, f"{path_variable} = ")]
    return None


def _repair_path_function(query: str, defect: CypherDefect) -> Optional[Tuple[str, RepairNote]]:
    masked = _mask_literals(query)
    bindings = _Bindings(masked)
    variable = defect.variable
    function = defect.function
    calls = _call_spans(masked, function, variable)
    if not calls:
        return None
    before = query[calls[0][0]:calls[0][1]]

    if function == "nodes":
        if variable in bindings.relationships:
            replacement = f"[startNode({variable}), endNode({variable})]"
        else:
            replacement = variable
        edits = [(start, end, replacement) for start, end in calls]
        return _apply_edits(query, edits), RepairNote(
            before=before, after=replacement,
            reason=f"nodes() applied to entity variable '{variable}'; projected the entity directly",
        )

    if function == "relationships" and variable in bindings.relationships:
        edits = [(start, end, variable) for start, end in calls]
        return _apply_edits(query, edits), RepairNote(
            before=before, after=variable,
            reason=f"relationships() applied to relationship variable '{variable}'; projected it directly",
        )

    if function == "relationships":
        hop = _incoming_hop(masked, variable)
        if hop is not None:
            content = hop.group(1)
            existing = re.match(r"\s*(\w+)", content)
            if existing:
                rel_variable = existing.group(1)
                edits = []
            else:
                rel_variable = bindings.fresh_name(f"r_{variable}")
                edits = [(hop.start(1), hop.start(1), rel_variable)]
            edits.extend((start, end, rel_variable) for start, end in calls)
            return _apply_edits(query, edits), RepairNote(
                before=before, after=rel_variable,
                reason=f"relationships() applied to node '{variable}'; bound relationship variable "
                       f"'{rel_variable}' on its incoming hop",
            )

    bound = _bind_path(masked, variable, bindings)
    if bound is None:
        return None
    path_variable, edits = bound
    replacement = f"{function}({path_variable})"
    edits = edits + [(start, end, replacement) for start, end in calls]
    return _apply_edits(query, edits), RepairNote(
        before=before, after=replacement,
        reason=f"{function}() applied to entity '{variable}'; bound path variable '{path_variable}' on its MATCH pattern",
    )


def repair(query: str) -> RepairedQuery:
    """Apply every deterministic fix that matches. Idempotent."""
    text = query or ""
    notes: List[RepairNote] = []

    text, quoting_notes = _fix_quoting(text)
    notes.extend(quoting_notes)

    unrepairable: Set[Tuple[Optional[str], Optional[str]]] = set()
    for _ in range(MAX_REPAIR_PASSES):
        candidates = [
            defect for defect in detect_defects(text)
            if defect.defect_class == PATH_FUNCTION_ON_ENTITY
            and (defect.function, defect.variable) not in unrepairable
        ]
        if not candidates:
            break
        defect = candidates[0]
        repaired = _repair_path_function(text, defect)
        if repaired is None:
            unrepairable.add((defect.function, defect.variable))
            continue
        text, note = repaired
        notes.append(note)

    for note in notes:
        logger.info(f"Cypher repair: {note.before!r} -> {note.after!r} ({note.reason})")

    remaining = detect_defects(text)
    for defect in remaining:
        logger.warning(f"Unrepaired Cypher defect [{defect.defect_class}]: {defect.detail}")

    return RepairedQuery(text=text, was_changed=text != (query or ""), notes=notes, remaining_defects=remaining)


# ============================================================================
# LLM second opinion
# ============================================================================

async def review_with_llm(
    query: str,
    llm: LLMClient,
    schema: GraphSchema = DEFAULT_SCHEMA,
    deadline: Optional[Deadline] = None
) -> RepairedQuery:
    """
    Ask the LLM to check the query against the review checklist.

    The original query is kept when the model reports no change, returns
    nothing usable, introduces a write clause, or the call fails.
    """
    unchanged = RepairedQuery(text=query, was_changed=False, remaining_defects=detect_defects(query))
    prompt = CypherReviewPrompt()

    try:
        response = await llm.generate_text(
            prompt.format_user_message(query=query, schema_description=schema.describe()),
            system_prompt=prompt.get_system_prompt(),
            temperature=0.0,
            max_tokens=600,
            deadline=deadline,
        )
        data = parse_json_response(response)
        prompt.validate_response_schema(data)
    except (CollaboratorUnavailableError, LLMResponseParseError, PromptSecurityError) as e:
        logger.warning(f"LLM review skipped, keeping query: {e}")
        return unchanged

    reviewed = strip_code_fences(data.get("query") or "").strip()
    if not data.get("changed") or not reviewed or reviewed == query.strip():
        logger.info("LLM review reported no changes")
        return unchanged
    if not is_read_only(reviewed):
        logger.warning("LLM review introduced a write clause, keeping original query")
        return unchanged

    corrections = [str(c) for c in data.get("corrections") or []] or ["query revised"]
    notes = [RepairNote(before=query, after=reviewed, reason=f"LLM review: {c}") for c in corrections]
    for note in notes:
        logger.info(f"Cypher review correction: {note.reason}")

    repaired = repair(reviewed)
    return RepairedQuery(
        text=repaired.text,
        was_changed=True,
        notes=notes + repaired.notes,
        remaining_defects=repaired.remaining_defects,
    )


async def validate_and_fix(
    candidate: Dict[str, Any],
    llm: Optional[LLMClient] = None,
    schema: GraphSchema = DEFAULT_SCHEMA,
    deadline: Optional[Deadline] = None,
    llm_review: bool = False
) -> Dict[str, Any]:
    """
    Run the repair pipeline over a synthesizer result.

    The deterministic pass always runs. The LLM review runs when an LLM is
    given and defects remain, or when llm_review is set.
    """
    original = candidate.get("query") or ""
    result = repair(original)
    notes = list(result.notes)

    if llm is not None and (result.remaining_defects or llm_review):
        reviewed = await review_with_llm(result.text, llm, schema, deadline)
        if reviewed.was_changed:
            notes.extend(reviewed.notes)
        result = RepairedQuery(
            text=reviewed.text,
            was_changed=result.was_changed or reviewed.was_changed,
            notes=notes,
            remaining_defects=reviewed.remaining_defects,
        )

    fixed = dict(candidate)
    fixed["query"] = result.text
    fixed["was_auto_fixed"] = result.text != original
    fixed["fixes"] = [note.reason for note in notes]
    fixed["remaining_defects"] = [defect.defect_class for defect in result.remaining_defects]
    return fixed
