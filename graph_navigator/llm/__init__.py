from graph_navigator.llm.client import LLMClient
from graph_navigator.llm.parsing import (
    parse_json_response,
    parse_json_strict,
    strip_code_fences,
)

__all__ = [
    "LLMClient",
    "parse_json_response",
    "parse_json_strict",
    "strip_code_fences",
]
