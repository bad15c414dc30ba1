import hashlib
from typing import Optional

from graph_navigator.prompts.base_prompt import SecurePromptTemplate, PromptSecurityError


class TextResponsePrompt(SecurePromptTemplate):
    """Prompts whose answer is free text rather than JSON."""

    MIN_RESPONSE_LENGTH = 1

    def validate_response_schema(self, data: dict) -> bool:
        """
        Raises:
            PromptSecurityError: If the generated text is empty
        """
        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str) or len(text.strip()) < self.MIN_RESPONSE_LENGTH:
            raise PromptSecurityError("Response text is empty")
        return True


class AnalysisPrompt(TextResponsePrompt):
    """Narrative summary of one dataset, or a comparison of two."""

    TEMPLATE = """You are a business analyst for a knowledge graph of industries, sectors, departments, pain
points and AI project opportunities. You receive query results as nodes (with a group such as Sector or
PainPoint) and edges between them.

For a single dataset: summarise what it contains, the most connected entities and notable patterns.
For two datasets: compare them directly. Name the similarities, the differences and which entities
appear in only one of them.

Write 2 to 4 short paragraphs in plain language. Only mention entities present in the data.
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def _format_message(
        self,
        dataset: str,
        dataset2: Optional[str] = None,
        comparison_type: str = "general",
        analysis_goal: Optional[str] = None
    ) -> str:
        if not dataset:
            raise PromptSecurityError("dataset cannot be empty")

        sections = []
        if analysis_goal:
            sections.append(self.build_data_section("ANALYSIS_GOAL", analysis_goal, header="Analysis Goal"))

        if dataset2 is None:
            sections.append(self.build_data_section("DATASET", dataset, header="Query Results"))
            instruction = "Summarise the dataset now:"
        else:
            sections.append(self.build_data_section("DATASET_1", dataset, header="First Dataset"))
            sections.append(self.build_data_section("DATASET_2", dataset2, header="Second Dataset"))
            instruction = f"Compare the two datasets now (comparison type: {comparison_type}):"

        return "\n\n".join(sections) + f"\n\n{instruction}"


class CreativePrompt(TextResponsePrompt):
    """Ideas and recommendations grounded in the catalog."""

    TEMPLATE = """You are an AI solutions consultant. Using the context from the knowledge graph, produce practical
ideas, recommendations or next steps for the stated goal.

Put each idea or recommendation on its own line. Keep it concrete and specific to the industries,
sectors and pain points in the context.
"""

    TEMPLATE_HASH = hashlib.sha256(TEMPLATE.encode('utf-8')).hexdigest()

    def _format_message(self, creative_goal: str, style: str, context: Optional[str] = None) -> str:
        if not creative_goal:
            raise PromptSecurityError("creative_goal cannot be empty")

        sections = [
            self.build_data_section("CREATIVE_GOAL", creative_goal, header="Goal"),
            self.build_data_section("STYLE", style, header="Style"),
        ]
        if context:
            sections.append(self.build_data_section("CONTEXT", context, header="Context"))
        return "\n\n".join(sections) + "\n\nWrite your response now:"
