import hashlib

from graph_navigator.prompts.base_prompt import SecurePromptTemplate, PromptSecurityError


class CypherReviewPrompt(SecurePromptTemplate):
    """
    Second-opinion review of a generated query.

    The model checks the query against a fixed checklist and may return an
    edited query with a list of named corrections.
    """

    TEMPLATE = """You are a Cypher reviewer. Check the query against this checklist and fix only what violates it:

1. **Quoting**: string literals use single quotes, never double quotes
2. **Literal syntax**: lists use [..], maps use {key: value}, property names are not quoted
3. **Relationship binding**: every relationship in MATCH is bound to a variable and returned
4. **Path functions**: relationships(), nodes() and length() are applied to path variables only
5. **Read-only**: no CREATE, MERGE, DELETE, SET or REMOVE

Do NOT change what the query retrieves. If nothing violates the checklist, return it unchanged with
"changed": false.

OUTPUT FORMAT:
Return ONLY valid JSON:
{"query": "the full query", "changed": true, "corrections": ["short name of each fix"]}
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def validate_response_schema(self, data: dict) -> bool:
        """
        Raises:
            PromptSecurityError: If the changed flag or query are malformed
        """
        if not isinstance(data, dict):
            raise PromptSecurityError("Response must be a JSON object")
        if "changed" in data and not isinstance(data["changed"], bool):
            raise PromptSecurityError("'changed' must be boolean")
        if data.get("changed") and not isinstance(data.get("query"), str):
            raise PromptSecurityError("'query' must be a string when changed is true")
        corrections = data.get("corrections", [])
        if corrections is not None and not isinstance(corrections, list):
            raise PromptSecurityError("'corrections' must be a list")
        return True

    def _format_message(self, query: str, schema_description: str) -> str:
        return "\n\n".join([
            self.build_data_section("GRAPH_SCHEMA", schema_description, header="Graph Schema"),
            self.build_data_section("CANDIDATE_QUERY", query, header="Query To Review"),
        ]) + "\n\nReview the query now:"


class CypherRecoveryPrompt(SecurePromptTemplate):
    """Diagnose a database error against the failing query and propose a fix."""

    TEMPLATE = """You are a Cypher debugging expert. A query failed in the database. Read the error, find the cause
in the query and propose a corrected query that keeps the original intent.

Common cause: a path function such as relationships(x) or nodes(x) applied to a node or relationship
variable. Fix it by binding a relationship variable on the pattern and returning it, or by binding a
path variable p = (...) and calling the function on p.

Keep string literals in single quotes and return bound relationships alongside nodes.

Rate your confidence from 0.0 to 1.0 that the corrected query will run and answer the same question.

OUTPUT FORMAT:
Return ONLY valid JSON:
{"corrected_query": "...", "confidence": 0.9, "explanation": "what was wrong", "changes": ["each change made"]}
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def validate_response_schema(self, data: dict) -> bool:
        """
        Raises:
            PromptSecurityError: If the correction or its confidence are malformed
        """
        if not isinstance(data, dict):
            raise PromptSecurityError("Response must be a JSON object")
        if not isinstance(data.get("corrected_query"), str) or not data["corrected_query"].strip():
            raise PromptSecurityError("'corrected_query' must be a non-empty string")
        try:
            confidence = float(data.get("confidence", 0))
        except (TypeError, ValueError):
            raise PromptSecurityError("'confidence' must be a number")
        if not 0.0 <= confidence <= 1.0:
            raise PromptSecurityError(f"'confidence' must be within 0.0-1.0, got: {confidence}")
        changes = data.get("changes", [])
        if changes is not None and not isinstance(changes, list):
            raise PromptSecurityError("'changes' must be a list")
        return True

    def _format_message(self, query: str, error_message: str, error_type: str, schema_description: str) -> str:
        return "\n\n".join([
            self.build_data_section("GRAPH_SCHEMA", schema_description, header="Graph Schema"),
            self.build_data_section("FAILED_QUERY", query, header="Original Query"),
            self.build_data_section("DATABASE_ERROR", error_message[:2000], header=f"Error ({error_type})"),
        ]) + "\n\nDiagnose and correct the query now:"
