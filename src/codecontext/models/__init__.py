"""Database models and typed metadata for codecontext."""
