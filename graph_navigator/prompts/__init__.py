"""
Secure prompt templates.

Every template verifies its own SHA-256 hash on construction and isolates
dynamic values in tagged sections.
"""
from graph_navigator.prompts.base_prompt import SecurePromptTemplate, PromptSecurityError
from graph_navigator.prompts.planner_prompts import PlannerPrompt
from graph_navigator.prompts.cypher_prompts import (
    CypherGoalPrompt,
    CypherProxyEntityPrompt,
    CypherExistenceAnalyticsPrompt,
    CypherComparisonPrompt,
    CypherMultiLevelPrompt,
)
from graph_navigator.prompts.repair_prompts import CypherReviewPrompt, CypherRecoveryPrompt
from graph_navigator.prompts.analysis_prompts import AnalysisPrompt, CreativePrompt

__all__ = [
    "SecurePromptTemplate",
    "PromptSecurityError",
    "PlannerPrompt",
    "CypherGoalPrompt",
    "CypherProxyEntityPrompt",
    "CypherExistenceAnalyticsPrompt",
    "CypherComparisonPrompt",
    "CypherMultiLevelPrompt",
    "CypherReviewPrompt",
    "CypherRecoveryPrompt",
    "AnalysisPrompt",
    "CreativePrompt",
]
