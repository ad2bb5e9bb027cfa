"""
Tests for centralized configuration system.
Verifies environment variable loading and default values.
"""
import pytest
from deal_intel.config import Settings, get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    # Clear the lru_cache around every test
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestConfigurationSystem:
    """Test suite for configuration management."""

    def test_default_values(self):
        """Verify all configuration fields have sensible defaults."""
        settings = Settings(_env_file=None, openai_api_key="test-key")

        # Model defaults
        assert settings.impact_model == "openai:gpt-4o-mini"
        assert settings.role_model == "openai:gpt-4o-mini"
        assert settings.narrative_model == "openai:gpt-4o"
        assert settings.qualification_model == "openai:gpt-4o"

        # Concurrency and inference contract
        assert settings.pair_concurrency == 3
        assert settings.inference_concurrency == 2
        assert settings.inference_timeout_seconds == 180.0
        assert settings.safe_input_tokens == 115_000
        assert settings.activity_deadline_seconds is None

        # Context windows
        assert settings.max_email_activities == 15
        assert settings.max_meeting_activities == 10
        assert settings.emergency_max_email_activities == 8
        assert settings.emergency_max_meeting_activities == 5

        # Deal health
        assert settings.temperature_normalization_cap == 300.0
        assert settings.momentum_window_days == 14
        assert settings.trend_min_points == 5

        # Queue
        assert settings.queue_max_retries == 5
        assert settings.historical_grace_period_seconds == 300

        assert settings.log_level == "INFO"
        assert settings.enable_structured_logging is False
        assert settings.environment in ["development", "test"]

    def test_environment_variable_override(self, monkeypatch):
        """Verify environment variables override defaults."""
        monkeypatch.setenv("OPENAI_API_KEY", "custom-key")
        monkeypatch.setenv("IMPACT_MODEL", "openai:gpt-4o")
        monkeypatch.setenv("PAIR_CONCURRENCY", "6")
        monkeypatch.setenv("INFERENCE_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("ACTIVITY_DEADLINE_SECONDS", "600")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("ENVIRONMENT", "production")

        settings = get_settings()

        assert settings.openai_api_key == "custom-key"
        assert settings.impact_model == "openai:gpt-4o"
        assert settings.pair_concurrency == 6
        assert settings.inference_timeout_seconds == 30.0
        assert settings.activity_deadline_seconds == 600.0
        assert settings.log_level == "DEBUG"
        assert settings.environment == "production"

    def test_boolean_environment_variables(self, monkeypatch):
        """Verify boolean environment variables parse correctly."""
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        monkeypatch.setenv("INCLUDE_ATTENDEE_DETAILS", "false")
        monkeypatch.setenv("ENABLE_STRUCTURED_LOGGING", "true")

        settings = get_settings()

        assert settings.include_attendee_details is False
        assert settings.enable_structured_logging is True

    def test_singleton_pattern(self):
        """Verify get_settings() returns same instance."""
        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

    def test_invalid_log_level_rejected(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "VERBOSE")

        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_model_configuration_flexibility(self, monkeypatch):
        """Verify each analyzer can use a different model."""
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        monkeypatch.setenv("IMPACT_MODEL", "openai:gpt-4o-mini")
        monkeypatch.setenv("NARRATIVE_MODEL", "openai:gpt-4o")
        monkeypatch.setenv("QUALIFICATION_MODEL", "openai:gpt-4.1")

        settings = get_settings()

        assert settings.impact_model != settings.narrative_model
        assert settings.narrative_model != settings.qualification_model
