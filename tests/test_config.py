"""
Tests for configuration management.
"""

from pathlib import Path

from codecontext.config import (
    DEFAULT_SOURCE_TYPE_WEIGHTS,
    Settings,
    get_xdg_state_dir,
)


class TestSettings:
    """Tests for Settings configuration."""

    def test_default_store_settings(self):
        """Test default knowledge store settings."""
        settings = Settings()

        assert settings.database_url == "sqlite:///codecontext.db"
        assert settings.database_echo is False

    def test_default_job_settings(self):
        settings = Settings()

        assert settings.ai_job_concurrency == 2
        assert settings.ai_job_delay_ms == 500
        assert settings.max_ai_job_attempts == 3
        assert settings.ai_job_polling_interval_ms == 5000
        assert settings.ai_job_batch_size == 5

    def test_default_retrieval_settings(self):
        settings = Settings()

        assert settings.default_token_budget == 4000
        assert settings.max_seed_entities_for_expansion == 3
        assert settings.source_type_weights == DEFAULT_SOURCE_TYPE_WEIGHTS
        assert settings.ai_status_weights["completed"] == 1.2

    def test_weight_tables_are_independent_copies(self):
        first = Settings()
        first.source_type_weights["git_commit"] = 0.1

        assert Settings().source_type_weights["git_commit"] == 0.5

    def test_settings_from_env_vars(self, monkeypatch):
        """Test that settings can be overridden by environment variables."""
        monkeypatch.setenv("DATABASE_URL", "sqlite:////tmp/other.db")
        monkeypatch.setenv("AI_JOB_CONCURRENCY", "4")
        monkeypatch.setenv("TOPIC_SHIFT_THRESHOLD", "0.35")

        settings = Settings()

        assert settings.database_url == "sqlite:////tmp/other.db"
        assert settings.ai_job_concurrency == 4
        assert settings.topic_shift_threshold == 0.35

    def test_case_insensitive_env_vars(self, monkeypatch):
        """Test that environment variables are case-insensitive."""
        monkeypatch.setenv("log_level", "DEBUG")

        assert Settings().log_level == "DEBUG"

    def test_weight_table_from_json_env(self, monkeypatch):
        monkeypatch.setenv("AI_STATUS_WEIGHTS", '{"completed": 1.5, "pending": 1.0}')

        assert Settings().ai_status_weights == {"completed": 1.5, "pending": 1.0}


class TestProviderSelection:
    """Tests for the provider-dependent properties."""

    def test_openai_by_default(self):
        settings = Settings(openai_api_key="sk-openai", anthropic_api_key="sk-ant")

        assert settings.ai_provider == "openai"
        assert settings.ai_api_key == "sk-openai"
        assert settings.ai_model == "gpt-4o-mini"

    def test_anthropic(self):
        settings = Settings(
            ai_provider="anthropic",
            anthropic_api_key="sk-ant",
            anthropic_model="claude-3-5-haiku-20241022",
        )

        assert settings.ai_api_key == "sk-ant"
        assert settings.ai_model == "claude-3-5-haiku-20241022"

    def test_missing_key_is_empty(self):
        assert Settings().ai_api_key == ""


class TestLogDirectory:
    """Tests for log directory resolution."""

    def test_xdg_state_home(self, monkeypatch):
        monkeypatch.setenv("XDG_STATE_HOME", "/var/state")

        assert get_xdg_state_dir() == str(Path("/var/state") / "codecontext" / "logs")

    def test_home_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_STATE_HOME", raising=False)
        monkeypatch.setenv("HOME", "/home/dev")

        assert get_xdg_state_dir() == str(
            Path("/home/dev") / ".local" / "state" / "codecontext" / "logs"
        )

    def test_no_home(self, monkeypatch):
        monkeypatch.delenv("XDG_STATE_HOME", raising=False)
        monkeypatch.delenv("HOME", raising=False)

        assert get_xdg_state_dir() == "./logs"

    def test_explicit_log_dir(self, tmp_path):
        settings = Settings(log_dir=str(tmp_path))

        assert settings.log_directory == tmp_path
