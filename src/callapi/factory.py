"""
Factory functions for creating callapi clients.
"""
from dataclasses import replace
from typing import Any, Optional

from .config import ClientConfig
from .core.client import AsyncCallApiClient
from .settings import CallApiSettings


def create_fetch_client(
    config: Optional[ClientConfig] = None,
    settings: Optional[CallApiSettings] = None,
    **kwargs: Any,
) -> AsyncCallApiClient:
    """
    Create a client.

    Args:
        config: Base client configuration
        settings: Environment settings. Default: get_settings()
        **kwargs: ClientConfig fields, applied over ``config``

    Returns:
        AsyncCallApiClient instance.

    Example:
        client = create_fetch_client(
            base_url="https://api.example.com",
            dedupe_strategy="defer",
            retry=3,
        )
        async with client:
            result = await client.get("/users")
    """
    if config is None:
        config = ClientConfig(**kwargs)
    elif kwargs:
        config = replace(config, **kwargs)
    return AsyncCallApiClient(config, settings=settings)
