"""Signal engine settings loaded from the environment."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Runtime overrides for the signal validator.

    Variables use the ``SIGNAL_ENGINE_`` prefix, e.g.
    ``SIGNAL_ENGINE_COOLDOWN_SECONDS=300``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SIGNAL_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Validator / deduplicator
    cooldown_seconds: float = 120.0
    retention_seconds: float = 900.0
    min_confidence: float = 0.3
    min_risk_reward: float = 1.0


@lru_cache
def get_engine_settings() -> EngineSettings:
    """Get cached settings instance."""
    return EngineSettings()
