"""
Config Server Settings

Configuration management using pydantic settings.
Loads from environment variables with XFI_SERVER_ prefix.
"""

from typing import List, Optional

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Server configuration settings.

    Environment variables:
    - XFI_SERVER_CONFIG_PATH: Directory with archetype, rule and exemption JSON (optional;
      built-in profiles are served when unset or when a file is missing)
    - XFI_SERVER_SHARED_SECRET: Secret required in X-Shared-Secret for exemption requests
    - XFI_SERVER_ALLOWED_ORIGINS_RAW: Comma-separated list of allowed CORS origins
    - XFI_SERVER_MAX_TELEMETRY_EVENTS: Telemetry events kept in memory (default: 1000)
    - XFI_SERVER_DEBUG: Enable debug mode (default: false)
    """

    model_config = SettingsConfigDict(
        env_prefix="XFI_SERVER_",
        env_file=".env",
        extra="ignore",
    )

    config_path: Optional[str] = None
    shared_secret: Optional[str] = None
    allowed_origins_raw: str = ""
    max_telemetry_events: int = 1000
    debug: bool = False

    @computed_field
    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated allowed origins into list."""
        if not self.allowed_origins_raw:
            return []
        return [v.strip() for v in self.allowed_origins_raw.split(",") if v.strip()]


# Global settings instance
settings = Settings()
