"""
Core modules for callapi.
"""
from .client import AsyncCallApiClient
from .coordinator import LifecycleCoordinator, as_abort_error
from .request_builder import (
    build_url,
    build_headers,
    serialize_body,
    parse_body,
    create_descriptor,
    to_transport_request,
)
from .validation import run_validator

__all__ = [
    "AsyncCallApiClient",
    "LifecycleCoordinator",
    "as_abort_error",
    "build_url",
    "build_headers",
    "serialize_body",
    "parse_body",
    "create_descriptor",
    "to_transport_request",
    "run_validator",
]
