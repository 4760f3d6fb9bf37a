"""
Transports: the fetch-like primitive requests are sent through.
"""
from .httpx_transport import HttpxTransport

__all__ = ["HttpxTransport"]
