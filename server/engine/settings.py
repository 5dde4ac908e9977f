"""
Engine Settings

Configuration management using pydantic settings.
Loads from environment variables with XFI_ prefix.
"""

from typing import Any, Dict, Optional

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import DEFAULT_ARCHETYPE


class EngineSettings(BaseSettings):
    """
    Engine configuration settings.

    Environment variables:
    - XFI_ARCHETYPE: Archetype to analyze against (default: node-fullstack)
    - XFI_CONFIG_SERVER: Base URL of the remote config server (optional)
    - XFI_LOCAL_CONFIG_PATH: Directory holding local archetype/rule/exemption JSON (optional)
    - XFI_SHARED_SECRET: Shared secret sent with exemption and telemetry requests
    - XFI_REMOTE_RETRIES: Attempts per remote fetch (default: 3)
    - XFI_RETRY_DELAY: Seconds between remote attempts (default: 1.0)
    - XFI_WORKER_COUNT: Size of the fact worker pool (default: 4)
    - XFI_WORKER_TIMEOUT: Per-task timeout in seconds (default: 30)
    """

    model_config = SettingsConfigDict(
        env_prefix="XFI_",
        env_file=".env",
        extra="ignore",
    )

    archetype: str = DEFAULT_ARCHETYPE
    config_server: Optional[str] = None
    local_config_path: Optional[str] = None
    shared_secret: Optional[str] = None

    # Remote fetch behaviour
    remote_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 10.0

    # Worker pool
    worker_count: int = 4
    worker_timeout: float = 30.0

    # Scheduler
    batch_size: int = 10
    hash_batch_size: int = 50
    rehash_interval: float = 30.0

    telemetry_enabled: bool = True

    @computed_field
    @property
    def server_url(self) -> Optional[str]:
        """Config server base URL without a trailing slash."""
        if not self.config_server:
            return None
        return self.config_server.rstrip("/")

    def options_echo(self) -> Dict[str, Any]:
        """Invocation options safe to include in results (no secrets)."""
        return self.model_dump(exclude={"shared_secret"})


# Global settings instance
settings = EngineSettings()
