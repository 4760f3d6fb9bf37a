"""
Request deduplication: key generation and the in-flight registry.
"""
from .keys import (
    generate_dedupe_key,
    resolve_dedupe_key,
    normalize_headers,
    normalize_url,
    target_key,
)
from .registry import (
    InFlightRegistry,
    InFlightEntry,
    AcquireResult,
    DedupeEvent,
    DedupeEventType,
    DedupeEventListener,
)

__all__ = [
    # Keys
    "generate_dedupe_key",
    "resolve_dedupe_key",
    "normalize_headers",
    "normalize_url",
    "target_key",
    # Registry
    "InFlightRegistry",
    "InFlightEntry",
    "AcquireResult",
    "DedupeEvent",
    "DedupeEventType",
    "DedupeEventListener",
]
