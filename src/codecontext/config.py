"""
codecontext Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables (and an optional .env file).
"""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Documents consulted when summarizing the project's architecture
KEY_ARCHITECTURE_DOCUMENT_PATHS = [
    "README.md",
    "docs/architecture.md",
    "docs/prd.md",
    "docs/stories.md",
    "CHANGELOG.md",
]

# Relationship kinds followed when expanding from seed entities
DEFAULT_RELATIONSHIP_TYPES_FOR_EXPANSION = [
    "CALLS_FUNCTION",
    "CALLS_METHOD",
    "IMPLEMENTS_INTERFACE",
    "EXTENDS_CLASS",
    "DEFINES_CHILD_ENTITY",
    "TYPE_REFERENCE",
    "IMPORTS_MODULE",
    "ACCESSES_PROPERTY",
    "USES_VARIABLE",
    "DEFINES_TYPE",
    "USES_TYPE",
]

HIGH_PRIORITY_RELATIONSHIP_TYPES = [
    "CALLS_FUNCTION",
    "CALLS_METHOD",
    "IMPLEMENTS_INTERFACE",
    "EXTENDS_CLASS",
    "DEFINES_CHILD_ENTITY",
]

DEFAULT_SOURCE_TYPE_WEIGHTS = {
    "code_entity_fts": 1.0,
    "code_entity_keyword": 0.9,
    "project_document_fts": 0.8,
    "project_document_keyword": 0.7,
    "conversation_message": 0.6,
    "conversation_topic": 0.7,
    "git_commit": 0.5,
    "git_commit_file_change": 0.5,
    "code_entity_related": 0.85,
}

DEFAULT_AI_STATUS_WEIGHTS = {
    "completed": 1.2,
    "pending": 1.0,
    "failed": 0.8,
    "skipped": 1.0,
}

DEFAULT_RELATIONSHIP_TYPE_WEIGHTS = {
    "CALLS_FUNCTION": 1.1,
    "CALLS_METHOD": 1.1,
    "IMPLEMENTS_INTERFACE": 1.2,
    "EXTENDS_CLASS": 1.2,
    "IMPORTS_FROM": 0.9,
    "IMPORTS_MODULE": 0.9,
    "REQUIRES_MODULE": 0.9,
    "ACCESSES_PROPERTY": 0.8,
    "USES_VARIABLE": 0.8,
    "USES_TYPE": 1.0,
    "DEFINES_TYPE": 1.1,
    "REFERENCES": 0.7,
    "MENTIONS": 0.6,
}


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for codecontext logs.

    - Uses $XDG_STATE_HOME/codecontext if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/codecontext if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "codecontext" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "codecontext" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Knowledge store (one SQLite database per project)
    database_url: str = "sqlite:///codecontext.db"
    database_echo: bool = False

    # AI provider
    ai_provider: str = "openai"  # openai or anthropic
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250514"
    ai_max_output_tokens: int = 1000  # Budget hint passed to the enricher

    # Background enrichment jobs
    ai_job_concurrency: int = 2
    ai_job_delay_ms: int = 500  # Delay between dispatching jobs in one tick
    max_ai_job_attempts: int = 3
    ai_job_polling_interval_ms: int = 5000
    ai_job_batch_size: int = 5
    rate_limit_pause_seconds: int = 60  # Used when the provider gives no hint
    stale_job_timeout_minutes: int = 30
    purge_finished_jobs_days: int = 7

    # Retrieval
    default_token_budget: int = 4000
    max_seed_entities_for_expansion: int = 3
    context_decay_rate_hours: float = 24.0
    recency_max_boost: float = 0.2
    recency_min_age_hours: float = 1.0
    recency_max_age_hours: float = 168.0  # 1 week
    focus_boost: float = 0.15
    relationship_boost: float = 0.1
    high_priority_relationship_boost: float = 0.05
    source_type_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SOURCE_TYPE_WEIGHTS)
    )
    ai_status_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_AI_STATUS_WEIGHTS)
    )
    relationship_type_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_RELATIONSHIP_TYPE_WEIGHTS)
    )

    # Conversation continuity
    topic_shift_threshold: float = 0.2  # Keyword overlap below this is a shift
    recent_item_window_seconds: int = 300  # Balanced policy keeps newer items
    max_tracked_conversations: int = 1000  # In-memory states kept before eviction

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to XDG state dir if empty
    log_console_enabled: bool = True
    log_file_enabled: bool = False
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    # LLM Logging
    llm_logging_enabled: bool = False  # Log prompt/response previews to llm/requests.log

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def ai_api_key(self) -> str:
        """API key for the configured provider."""
        if self.ai_provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key

    @property
    def ai_model(self) -> str:
        """Model name for the configured provider."""
        if self.ai_provider == "anthropic":
            return self.anthropic_model
        return self.openai_model


# Global settings instance
settings = Settings()
