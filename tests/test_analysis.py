"""
Tests for analyze_and_summarize and generate_creative_text.
"""
import pytest

from conftest import banking_records
from graph_navigator.graph.formatting import format_graph_data
from graph_navigator.tasks.analysis import (
    MAX_DATASET_CHARS,
    analyze_and_summarize,
    generate_creative_text,
    render_dataset,
)

ANALYSIS_TEXT = (
    "Banking has two sectors, Retail Banking and Commercial Banking.\n\n"
    "Both sectors are linked directly to the industry."
)


class TestRenderDataset:

    def test_execution_output_reduced_to_graph(self):
        output = {"graphData": format_graph_data(banking_records()), "nodeCount": 3, "query": "MATCH ..."}

        text = render_dataset(output)

        assert "Nodes (3):" in text
        assert "- [Industry] Banking" in text
        assert "Banking -[HAS_SECTOR]-> Retail Banking" in text
        assert "MATCH" not in text

    def test_plain_values_serialised(self):
        assert '"valid": true' in render_dataset({"valid": True})

    def test_long_dataset_truncated(self):
        text = render_dataset("x" * (MAX_DATASET_CHARS + 500))
        assert text.endswith("(truncated)")
        assert len(text) < MAX_DATASET_CHARS + 50


class TestAnalyzeAndSummarize:

    @pytest.mark.asyncio
    async def test_single_dataset(self, task_context, fake_llm):
        fake_llm.responses = [ANALYSIS_TEXT]
        dataset = {"graphData": format_graph_data(banking_records())}

        result = await analyze_and_summarize({"dataset": dataset}, task_context)

        assert result.success is True
        assert result.output["analysis"] == ANALYSIS_TEXT
        assert result.output["summary"] == "Banking has two sectors, Retail Banking and Commercial Banking."
        assert result.output["is_comparison"] is False
        assert result.output["datasets_analyzed"] == 1
        assert fake_llm.calls[0]["temperature"] == 0.3
        assert fake_llm.calls[0]["max_tokens"] == 600

    @pytest.mark.asyncio
    async def test_comparison(self, task_context, fake_llm):
        fake_llm.responses = ["Retail Banking has more pain points."]
        first = {"graphData": format_graph_data(banking_records()[:1])}
        second = {"graphData": format_graph_data(banking_records()[1:])}

        result = await analyze_and_summarize(
            {"dataset1": first, "dataset2": second, "comparison_type": "sector"}, task_context
        )

        assert result.output["is_comparison"] is True
        assert result.output["datasets_analyzed"] == 2
        assert result.output["comparison_type"] == "sector"
        prompt = fake_llm.calls[0]["prompt"]
        assert "<DATASET_1>" in prompt and "<DATASET_2>" in prompt

    @pytest.mark.asyncio
    async def test_missing_dataset(self, task_context, fake_llm):
        result = await analyze_and_summarize({"comparison_type": "sector"}, task_context)
        assert result.success is False
        assert fake_llm.calls == []


class TestCreativeText:

    @pytest.mark.asyncio
    async def test_suggestions_from_lines(self, task_context, fake_llm):
        fake_llm.responses = ["1. Automate loan triage\n2) Chatbot for card disputes\n\n- Fraud scoring"]

        result = await generate_creative_text({"creative_goal": "AI ideas for retail banking"}, task_context)

        assert result.success is True
        assert result.output["suggestions"] == [
            "Automate loan triage",
            "Chatbot for card disputes",
            "Fraud scoring",
        ]
        assert result.output["style"] == "Professional and practical"
        assert fake_llm.calls[0]["temperature"] == 0.7
        assert fake_llm.calls[0]["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_missing_goal(self, task_context):
        result = await generate_creative_text({"style": "casual"}, task_context)
        assert result.success is False
        assert result.error_type == "invalid_params"
