"""
Parsing helpers for structured LLM output.

Models regularly wrap JSON in markdown fences, surround it with prose,
break string values over several lines or leave trailing commas. The strict
parser only strips fences; the lenient parser tries progressively more
forgiving strategies before giving up.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from graph_navigator.errors import LLMResponseParseError

logger = logging.getLogger("llm_parsing")

FENCED_BLOCK = re.compile(r"```(?:json|cypher|javascript|js)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
LEADING_FENCE = re.compile(r"^```(?:json|cypher|javascript|js)?\s*", re.IGNORECASE)
TRAILING_FENCE = re.compile(r"\s*```\s*$")
TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    """Return the content of the first fenced block, or the text without stray fences."""
    content = (text or "").strip()
    match = FENCED_BLOCK.search(content)
    if match:
        return match.group(1).strip()
    content = LEADING_FENCE.sub("", content)
    content = TRAILING_FENCE.sub("", content)
    return content.strip()


def parse_json_strict(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object after removing markdown fences.

    Raises:
        LLMResponseParseError: If the content is not a JSON object
    """
    content = strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise LLMResponseParseError(f"LLM did not return valid JSON: {e}", raw_response=text) from e

    if not isinstance(data, dict):
        raise LLMResponseParseError(
            f"Expected a JSON object, got {type(data).__name__}", raw_response=text
        )
    return data


def extract_first_object(text: str) -> Optional[str]:
    """Return the first balanced {...} span, honouring string literals."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def normalize_multiline_strings(text: str) -> str:
    """Escape raw newlines and tabs that appear inside JSON string values."""
    result: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                result.append("\\n")
                continue
            elif char == "\r":
                continue
            elif char == "\t":
                result.append("\\t")
                continue
        elif char == '"':
            in_string = True
        result.append(char)
    return "".join(result)


def _try_loads(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Lenient multi-strategy JSON object parser.

    Strategies, in order: raw text, fence-stripped text, first balanced
    object. Each candidate is tried as-is, with multi-line strings
    normalised, and with trailing commas removed.

    Raises:
        LLMResponseParseError: If every strategy fails
    """
    raw = text or ""
    stripped = strip_code_fences(raw)
    candidates = [raw.strip(), stripped]
    embedded = extract_first_object(stripped)
    if embedded:
        candidates.append(embedded)

    for candidate in candidates:
        if not candidate:
            continue
        normalized = normalize_multiline_strings(candidate)
        for attempt in (candidate, normalized, TRAILING_COMMA.sub(r"\1", normalized)):
            data = _try_loads(attempt)
            if data is not None:
                return data

    logger.warning(f"Lenient JSON parsing failed for response ({len(raw)} chars)")
    raise LLMResponseParseError("Could not extract a JSON object from LLM response", raw_response=raw)
