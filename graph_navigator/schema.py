"""
Graph schema shared by every component.

The schema is a frozen value built once at startup and injected at
construction time. Concurrent requests read it without locking.
"""
from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True)
class SynonymRule:
    """Curated mapping from trigger tokens to canonical entity names."""
    triggers: Tuple[str, ...]
    canonical_names: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(trigger in lowered for trigger in self.triggers)


@dataclass(frozen=True)
class SimilarityRule:
    """Short domain fragment whose known expansions earn a similarity bonus."""
    fragment: str
    expansions: Tuple[str, ...]


@dataclass(frozen=True)
class GraphSchema:
    node_labels: Tuple[str, ...]
    relationships: Tuple[str, ...]
    synonyms: Tuple[SynonymRule, ...] = ()
    similarity_rules: Tuple[SimilarityRule, ...] = ()
    fallback_suggestions: Tuple[str, ...] = ()
    max_suggestions: int = 4
    catalog_labels: Tuple[str, str] = ("Industry", "Sector")
    catalog_relationship: str = "HAS_SECTOR"

    def has_label(self, label: str) -> bool:
        """Case-sensitive membership in the label catalog."""
        return label in self.node_labels

    def relationship_types(self) -> List[str]:
        types = []
        for pattern in self.relationships:
            start = pattern.find("[:")
            end = pattern.find("]", start)
            if start != -1 and end != -1:
                rel_type = pattern[start + 2:end]
                if rel_type not in types:
                    types.append(rel_type)
        return types

    def describe(self) -> str:
        """Render the schema for inclusion in a prompt."""
        lines = ["Node Labels: " + ", ".join(self.node_labels), "", "Relationships:"]
        lines.extend(f"- {pattern}" for pattern in self.relationships)
        return "\n".join(lines)

    def suggestions_for(self, text: str) -> List[str]:
        """
        Suggest canonical names for an unresolved entity.

        Only names from the synonym table or the fallback list are ever
        returned, de-duplicated and capped at max_suggestions.
        """
        suggestions: List[str] = []
        for rule in self.synonyms:
            if rule.matches(text):
                suggestions.extend(rule.canonical_names)

        if not suggestions:
            suggestions.extend(self.fallback_suggestions)

        unique = list(dict.fromkeys(suggestions))
        return unique[:self.max_suggestions]


DEFAULT_SCHEMA = GraphSchema(
    node_labels=(
        "Industry",
        "Sector",
        "Department",
        "PainPoint",
        "ProjectOpportunity",
        "ProjectBlueprint",
        "Role",
        "Module",
        "SubModule",
    ),
    relationships=(
        "(Industry)-[:HAS_SECTOR]->(Sector)",
        "(Sector)-[:EXPERIENCES]->(PainPoint)",
        "(Department)-[:EXPERIENCES]->(PainPoint)",
        "(Sector)-[:HAS_OPPORTUNITY]->(ProjectOpportunity)",
        "(Department)-[:HAS_OPPORTUNITY]->(ProjectOpportunity)",
        "(ProjectOpportunity)-[:ADDRESSES]->(PainPoint)",
        "(ProjectOpportunity)-[:IS_INSTANCE_OF]->(ProjectBlueprint)",
        "(ProjectBlueprint)-[:REQUIRES_ROLE]->(Role)",
        "(ProjectBlueprint)-[:CONTAINS]->(Module)",
        "(Module)-[:NEEDS_SUBMODULE]->(SubModule)",
    ),
    synonyms=(
        SynonymRule(("retail", "consumer", "personal"), ("Retail Banking", "Consumer Banking")),
        SynonymRule(("commercial", "business", "corporate"), ("Commercial Banking", "Investment Banking")),
        SynonymRule(("health", "medical", "healthcare"), ("Health Insurance",)),
        SynonymRule(("property", "home", "real estate"), ("Property Insurance",)),
        SynonymRule(("life", "mortality"), ("Life Insurance",)),
        SynonymRule(("casualty", "accident", "liability"), ("Casualty Insurance",)),
        SynonymRule(("investment", "securities", "trading"), ("Investment Banking",)),
        SynonymRule(("credit", "union"), ("Credit Unions",)),
        SynonymRule(("online", "digital", "virtual"), ("Online Banking",)),
        SynonymRule(("private", "wealth"), ("Private Banking",)),
    ),
    similarity_rules=(
        SimilarityRule("retail", ("retail banking", "consumer banking")),
        SimilarityRule("commercial", ("commercial banking", "business banking")),
        SimilarityRule("health", ("health insurance", "medical insurance")),
        SimilarityRule("property", ("property insurance", "home insurance")),
        SimilarityRule("life", ("life insurance",)),
        SimilarityRule("investment", ("investment banking",)),
    ),
    fallback_suggestions=("Banking", "Insurance", "Retail Banking", "Commercial Banking"),
)
