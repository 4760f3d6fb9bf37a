"""
Plugins: named bundles of hooks plus an optional request setup step.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .pipeline import Hooks

logger = logging.getLogger("callapi.plugins")

PluginSetup = Callable[[Any], Union[Any, Awaitable[Any]]]
"""Receives the RequestDescriptor; may return a replacement (or None to keep it)."""


@dataclass
class Plugin:
    """A plugin contributed to a client."""

    id: str
    name: str = ""
    description: str = ""
    version: str = ""
    hooks: Optional[Hooks] = None
    setup: Optional[PluginSetup] = None


def validate_plugins(plugins: Iterable[Plugin]) -> None:
    """Validate plugin ids: required and unique."""
    seen = set()
    for plugin in plugins:
        if not plugin.id:
            raise ValueError("Plugin id is required")
        if plugin.id in seen:
            raise ValueError(f"Duplicate plugin id: {plugin.id}")
        seen.add(plugin.id)


async def run_plugin_setup(plugins: Iterable[Plugin], request: Any) -> Any:
    """
    Run every plugin's ``setup`` in order, threading the request through.

    Args:
        plugins: Plugins of the client
        request: RequestDescriptor of the call

    Returns:
        The (possibly replaced) RequestDescriptor
    """
    for plugin in plugins:
        if plugin.setup is None:
            continue

        replacement = plugin.setup(request)
        if inspect.isawaitable(replacement):
            replacement = await replacement

        if replacement is not None:
            logger.debug(f"run_plugin_setup: plugin {plugin.id} replaced the request")
            request = replacement

    return request
