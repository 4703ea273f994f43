"""
Global settings from environment variables.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class NightShiftSettings(BaseSettings):
    """
    Process-level configuration loaded from environment variables.

    Environment variables should be prefixed with NIGHTSHIFT_
    Example: NIGHTSHIFT_LOG_LEVEL=DEBUG, NIGHTSHIFT_CONFIG_PATH=./nightshift.json
    """

    model_config = SettingsConfigDict(
        env_prefix="nightshift_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Scheduler configuration overrides (JSON file merged over the defaults)
    config_path: str | None = None

    # Root directory for persisted per-agent state
    data_dir: str = "./data"


# Global settings instance (singleton)
settings = NightShiftSettings()


__all__ = ["NightShiftSettings", "settings"]
