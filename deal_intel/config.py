"""
Centralized Configuration System
Environment-aware settings for the intelligence pipeline, its analyzers and storage.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # OPENAI CONFIGURATION
    # ============================================
    openai_api_key: str = ""

    # ============================================
    # MODEL SELECTION (by analyzer role)
    # ============================================
    impact_model: str = "openai:gpt-4o-mini"
    behavioral_model: str = "openai:gpt-4o-mini"
    communication_model: str = "openai:gpt-4o-mini"
    responsiveness_model: str = "openai:gpt-4o-mini"
    role_model: str = "openai:gpt-4o-mini"
    narrative_model: str = "openai:gpt-4o"
    deal_summary_model: str = "openai:gpt-4o"
    qualification_model: str = "openai:gpt-4o"

    # ============================================
    # CONCURRENCY
    # ============================================
    pair_concurrency: int = 3        # (contact, deal) pairs in Phases 1-3
    inference_concurrency: int = 2   # Outbound inference calls, shared by all analyzers

    # ============================================
    # INFERENCE CONTRACT
    # ============================================
    inference_timeout_seconds: float = 180.0
    safe_input_tokens: int = 115_000
    activity_deadline_seconds: Optional[float] = None  # None = no activity-wide deadline

    # ============================================
    # CONTEXT WINDOWS (normal / emergency)
    # ============================================
    max_email_activities: int = 15
    max_meeting_activities: int = 10
    max_tokens_per_email: int = 800
    max_tokens_per_meeting: int = 400
    emergency_max_email_activities: int = 8
    emergency_max_meeting_activities: int = 5
    emergency_max_tokens_per_email: int = 400
    emergency_max_tokens_per_meeting: int = 200
    include_attendee_details: bool = True

    # ============================================
    # DEAL HEALTH
    # ============================================
    temperature_normalization_cap: float = 300.0
    momentum_window_days: int = 14
    momentum_threshold: float = 5.0
    trend_delta_threshold: float = 5.0
    trend_slope_threshold: float = 0.25  # Temperature degrees per day
    trend_window_size: int = 30
    trend_min_points: int = 5

    # ============================================
    # NARRATIVE WINDOWS
    # ============================================
    story_score_window: int = 15
    story_responsiveness_window: int = 10
    story_signal_window: int = 20

    # ============================================
    # MONGODB
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "deal_intel"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # PROCESSING QUEUE
    # ============================================
    queue_max_retries: int = 5
    worker_max_concurrent: int = 4
    worker_poll_interval: float = 1.0
    historical_grace_period_seconds: int = 300  # Older activities are flagged as historical backfill

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "test", "staging", "production"] = "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
