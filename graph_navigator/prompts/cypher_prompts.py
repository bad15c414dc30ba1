"""
Secure prompt templates for Cypher synthesis.

One template per synthesis mode. All of them share the same hard output
rules, which the query validator re-checks independently.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional

from graph_navigator.prompts.base_prompt import SecurePromptTemplate, PromptSecurityError


CYPHER_OUTPUT_RULES = """
HARD RULES FOR EVERY QUERY:

1. **Quoting**: String literals use single quotes only: WHERE i.name = 'Banking'. Never use double quotes
2. **Relationships**: Bind every relationship to a variable and return it next to the nodes it
   connects, so the result can be drawn as a graph:
   CORRECT: MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s
   WRONG:   MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN i, s
3. **Path functions**: relationships(), nodes() and length() only take a path variable bound as
   p = (...). Never call them on a node or relationship variable:
   CORRECT: MATCH p = (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN p, relationships(p)
   WRONG:   MATCH (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN relationships(s)
4. **Matching names**: Compare names case-insensitively, e.g. toLower(s.name) CONTAINS toLower('retail')
5. **Read-only**: Never use CREATE, MERGE, DELETE, SET or REMOVE
6. **Size**: Always end with LIMIT (100 or fewer)

OUTPUT FORMAT:
Return ONLY valid JSON:
{"query": "MATCH ...", "params": {}, "explanation": "one sentence", "connectionStrategy": "how nodes are connected"}
"""


class CypherPromptBase(SecurePromptTemplate):
    """Shared response validation and section layout for query synthesis."""

    REQUIRED_KEYS = ("query",)

    def validate_response_schema(self, data: dict) -> bool:
        """
        Raises:
            PromptSecurityError: If the query is missing or not a string
        """
        if not isinstance(data, dict):
            raise PromptSecurityError("Response must be a JSON object")
        missing = [key for key in self.REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise PromptSecurityError(f"Response missing required keys: {missing}")
        if not isinstance(data["query"], str):
            raise PromptSecurityError("'query' must be a string")
        if "params" in data and data["params"] is not None and not isinstance(data["params"], dict):
            raise PromptSecurityError("'params' must be an object")
        return True

    def _common_sections(
        self,
        goal: str,
        schema_description: str,
        entities: Optional[List[str]] = None,
        context: Any = None
    ) -> List[str]:
        if not goal or not isinstance(goal, str):
            raise PromptSecurityError("goal must be a non-empty string")

        sections = [
            self.build_data_section("GRAPH_SCHEMA", schema_description, header="Graph Schema"),
            self.build_data_section("GOAL", goal, header="Query Goal"),
        ]
        if entities:
            sections.append(self.build_data_section("ENTITIES", ", ".join(str(e) for e in entities), header="Entities"))
        if context:
            rendered = context if isinstance(context, str) else json.dumps(context, default=str)[:2000]
            sections.append(self.build_data_section("CONTEXT", rendered, header="Additional Context"))
        return sections


class CypherGoalPrompt(CypherPromptBase):
    """Plain goal-directed query synthesis."""

    TEMPLATE = """You are a Cypher expert for a knowledge graph of industries, sectors, departments,
pain points and AI project opportunities. Write ONE read-only Cypher query that fulfils the goal.
""" + CYPHER_OUTPUT_RULES

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def _format_message(self, goal: str, schema_description: str, entities=None, context=None) -> str:
        sections = self._common_sections(goal, schema_description, entities, context)
        return "\n\n".join(sections) + "\n\nWrite the query now:"


class CypherProxyEntityPrompt(CypherPromptBase):
    """The subject is an outside company or organisation approximated by graph entities."""

    TEMPLATE = """You are a Cypher expert for a knowledge graph of industries, sectors, departments,
pain points and AI project opportunities.

The user asked about a real-world company or organisation that is NOT stored in the graph. Approximate it
with the closest matching graph entities (usually the Industry and Sector the company operates in) and
write ONE read-only query over those proxy entities.

You MUST disclose the approximation: add an "approximation_note" field naming the company and the graph
entities used in its place, and set "connectionStrategy" to describe the proxy mapping.
""" + CYPHER_OUTPUT_RULES + """
For this task the JSON also carries "approximation_note", e.g.
{"query": "...", "params": {}, "explanation": "...", "connectionStrategy": "proxy: Acme Bank -> Retail Banking",
 "approximation_note": "Acme Bank is not in the graph; showing Retail Banking as the closest match"}
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    REQUIRED_KEYS = ("query", "approximation_note")

    def _format_message(
        self,
        goal: str,
        schema_description: str,
        proxy_subject: str,
        entities=None,
        context=None
    ) -> str:
        sections = self._common_sections(goal, schema_description, entities, context)
        sections.append(self.build_data_section("PROXY_SUBJECT", proxy_subject, header="Subject Not In Graph"))
        return "\n\n".join(sections) + "\n\nWrite the proxy query now:"


class CypherExistenceAnalyticsPrompt(CypherPromptBase):
    """Exclusion/inclusion analytics over relationship existence."""

    TEMPLATE = """You are a Cypher expert for a knowledge graph of industries, sectors, departments,
pain points and AI project opportunities.

Write ONE read-only query that answers an existence question:
- exclusion: entities that do NOT have a given relationship, e.g.
  MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) WHERE NOT (s)-[:HAS_OPPORTUNITY]->(:ProjectOpportunity) RETURN i, r, s
- inclusion: entities that DO have it, e.g.
  MATCH (s:Sector)-[r:HAS_OPPORTUNITY]->(o:ProjectOpportunity) RETURN s, r, o

Use pattern predicates (WHERE NOT (a)-[:REL]->(:Label)) or EXISTS { } subqueries for the test itself.
Still return a bound relationship for context (for exclusion, the parent relationship of the matched
entities) so the result can be drawn.
""" + CYPHER_OUTPUT_RULES

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    ANALYTICS_TYPES = ("exclusion", "inclusion")

    def _format_message(
        self,
        goal: str,
        schema_description: str,
        analytics_type: str,
        relationship: Optional[str] = None,
        target_label: Optional[str] = None,
        entities=None,
        context=None
    ) -> str:
        if analytics_type not in self.ANALYTICS_TYPES:
            raise PromptSecurityError(f"analytics_type must be one of {self.ANALYTICS_TYPES}, got: {analytics_type}")

        sections = self._common_sections(goal, schema_description, entities, context)
        details = f"Analytics type: {analytics_type}"
        if relationship:
            details += f"\nRelationship: {relationship}"
        if target_label:
            details += f"\nTarget label: {target_label}"
        sections.append(self.build_data_section("EXISTENCE_TEST", details, header="Existence Test"))
        return "\n\n".join(sections) + "\n\nWrite the existence query now:"


class CypherComparisonPrompt(CypherPromptBase):
    """Side-by-side data for two or more entities."""

    TEMPLATE = """You are a Cypher expert for a knowledge graph of industries, sectors, departments,
pain points and AI project opportunities.

Write ONE read-only query that returns comparable data for every entity listed, so a later step can
describe the differences. Match all entities in the same query (e.g. WHERE s.name IN ['A', 'B']) and
return the same kinds of neighbours for each of them, with their relationships.
""" + CYPHER_OUTPUT_RULES

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def _format_message(self, goal: str, schema_description: str, entities=None, context=None) -> str:
        if not entities or len(entities) < 2:
            raise PromptSecurityError("comparison needs at least two entities")
        sections = self._common_sections(goal, schema_description, entities, context)
        return "\n\n".join(sections) + "\n\nWrite the comparison query now:"


class CypherMultiLevelPrompt(CypherPromptBase):
    """Query a coarse and a fine-grained label together when the right level is unknown."""

    TEMPLATE = """You are a Cypher expert for a knowledge graph of industries, sectors, departments,
pain points and AI project opportunities.

The user's term could refer to more than one level of the hierarchy (for example an Industry or a
Sector). Write ONE read-only query that searches every listed level and combines the branches with
UNION. Every branch must return the same column names (for example: RETURN n, r, m), and every branch
must return its bound relationship.

Example:
MATCH (n:Industry)-[r:HAS_SECTOR]->(m:Sector) WHERE toLower(n.name) CONTAINS toLower('bank') RETURN n, r, m
UNION
MATCH (n:Sector)-[r:EXPERIENCES]->(m:PainPoint) WHERE toLower(n.name) CONTAINS toLower('bank') RETURN n, r, m
""" + CYPHER_OUTPUT_RULES

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def _format_message(
        self,
        goal: str,
        schema_description: str,
        levels: List[str],
        entities=None,
        context=None
    ) -> str:
        if not levels:
            raise PromptSecurityError("multi-level synthesis needs at least one label")
        sections = self._common_sections(goal, schema_description, entities, context)
        sections.append(self.build_data_section("LEVELS", ", ".join(levels), header="Labels To Search"))
        return "\n\n".join(sections) + "\n\nWrite the multi-level query now:"


def render_params_hint(params: Dict[str, Any]) -> str:
    """Compact rendering of extra synthesis params for logging."""
    return ", ".join(f"{key}={value}" for key, value in params.items() if key not in ("goal", "context"))
