"""
Pytest configuration file.

This file is automatically loaded by pytest before any tests run.
It sets up the test environment configuration and the in-memory
collaborators shared by the test modules.
"""
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

# Set APP_ENV to test before any other imports
os.environ['APP_ENV'] = 'test'

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from graph_navigator.schema import DEFAULT_SCHEMA  # noqa: E402
from graph_navigator.tasks.context import TaskContext  # noqa: E402


# ============================================================================
# Graph value doubles (shaped like neo4j Node / Relationship / Path)
# ============================================================================

class FakeNode:
    def __init__(self, element_id, labels, **properties):
        self.element_id = str(element_id)
        self.labels = frozenset(labels)
        self._properties = properties

    def items(self):
        return self._properties.items()

    def __getitem__(self, key):
        return self._properties[key]


class FakeRelationship:
    def __init__(self, element_id, rel_type, start_node, end_node, **properties):
        self.element_id = str(element_id)
        self.type = rel_type
        self.start_node = start_node
        self.end_node = end_node
        self._properties = properties

    def items(self):
        return self._properties.items()


class FakePath:
    def __init__(self, nodes, relationships):
        self.nodes = list(nodes)
        self.relationships = list(relationships)


# ============================================================================
# Collaborator doubles
# ============================================================================

class FakeLLM:
    """
    Scripted LLM client.

    Each call consumes the next response; an Exception instance in the
    script is raised instead of returned.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def generate_text(self, prompt, *, system_prompt=None, temperature=0.1, max_tokens=800, deadline=None):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError(f"Unexpected LLM call #{len(self.calls)}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeSession:
    def __init__(self, graph):
        self.graph = graph

    async def run(self, query, params=None, deadline=None):
        self.graph.queries.append((query, dict(params or {})))
        handler = self.graph.handler
        if handler is not None:
            outcome = handler(query, params or {})
        elif self.graph.results:
            outcome = self.graph.results.pop(0)
        else:
            outcome = []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeGraph:
    """
    Scripted graph database client.

    Results are either consumed in order from `results` or produced by
    `handler(query, params)`. Sessions opened and closed are counted.
    """

    def __init__(self, results=None, handler=None):
        self.results = list(results or [])
        self.handler = handler
        self.queries = []
        self.opened = 0
        self.closed = 0
        self.driver_closed = False

    @asynccontextmanager
    async def session(self):
        self.opened += 1
        try:
            yield FakeSession(self)
        finally:
            self.closed += 1

    async def close(self):
        self.driver_closed = True


# ============================================================================
# Sample data
# ============================================================================

def banking_records():
    """Banking industry with two sectors, as (i, r, s) records."""
    banking = FakeNode("i1", ["Industry"], name="Banking")
    retail = FakeNode("s1", ["Sector"], name="Retail Banking")
    commercial = FakeNode("s2", ["Sector"], name="Commercial Banking")
    return [
        {"i": banking, "r": FakeRelationship("r1", "HAS_SECTOR", banking, retail), "s": retail},
        {"i": banking, "r": FakeRelationship("r2", "HAS_SECTOR", banking, commercial), "s": commercial},
    ]


def catalog_records():
    return [
        {"parent": "Banking", "children": ["Retail Banking", "Commercial Banking"]},
        {"parent": "Insurance", "children": ["Health Insurance", "Life Insurance"]},
    ]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_graph():
    return FakeGraph()


@pytest.fixture
def task_context(fake_llm, fake_graph):
    return TaskContext(llm=fake_llm, graph=fake_graph, schema=DEFAULT_SCHEMA)
