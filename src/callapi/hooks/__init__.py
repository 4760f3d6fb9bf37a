"""
Lifecycle hooks and plugins.
"""
from .pipeline import (
    Hooks,
    HookRecord,
    HookPipeline,
)
from .plugins import (
    Plugin,
    validate_plugins,
    run_plugin_setup,
)

__all__ = [
    "Hooks",
    "HookRecord",
    "HookPipeline",
    "Plugin",
    "validate_plugins",
    "run_plugin_setup",
]
