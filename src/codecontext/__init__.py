"""codecontext - context retrieval and continuity engine for AI coding assistants."""

__version__ = "0.1.0"
