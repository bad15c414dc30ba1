"""Graph Navigator: plans, validates and executes natural-language questions over a knowledge graph."""

__version__ = "1.0.0"
