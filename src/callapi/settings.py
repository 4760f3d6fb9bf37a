"""Environment-driven defaults using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class CallApiSettings(BaseSettings):
    """Client defaults loaded from ``CALLAPI_*`` environment variables.

    They sit below anything set on ``ClientConfig`` or per call.
    """

    model_config = SettingsConfigDict(env_prefix="CALLAPI_", env_file=None)

    timeout: Optional[float] = None
    retry_attempts: int = 0
    dedupe_strategy: str = "cancel"
    result_mode: str = "all"
    debug: bool = False
    verify_ssl: bool = True


@lru_cache()
def get_settings() -> CallApiSettings:
    """Get cached settings instance."""
    return CallApiSettings()
