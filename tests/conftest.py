"""Pytest configuration and fixtures for callapi tests."""
import asyncio
import json
from typing import Any, List, Optional

import pytest

from callapi import (
    ApiResponse,
    AsyncCallApiClient,
    CallApiSettings,
    ClientConfig,
    StreamProgressEvent,
    TransportRequest,
)


def make_response(
    status: int = 200,
    body: Any = None,
    headers: Optional[dict] = None,
    status_text: str = "",
) -> ApiResponse:
    """Build an ApiResponse with a JSON (or raw) body."""
    if body is None:
        content = b""
    elif isinstance(body, bytes):
        content = body
    elif isinstance(body, str):
        content = body.encode("utf-8")
    else:
        content = json.dumps(body).encode("utf-8")
    return ApiResponse(status=status, status_text=status_text, headers=headers or {}, content=content)


class FakeTransport:
    """Scripted transport: returns (or raises) queued items in order.

    The last item is repeated once the queue is down to one entry.
    """

    def __init__(self, responses: Optional[List[Any]] = None, delay: float = 0.0):
        self.responses = list(responses or [make_response(200, {"ok": True})])
        self.delay = delay
        self.calls: List[TransportRequest] = []
        self.closed = False

    def _next(self) -> Any:
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def _deliver(self, item: Any, on_progress) -> ApiResponse:
        if isinstance(item, BaseException):
            raise item
        if on_progress is not None and item.content:
            await on_progress(StreamProgressEvent(item.content, len(item.content), len(item.content)))
        return item

    async def send(self, request: TransportRequest, signal, on_progress=None) -> ApiResponse:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return await self._deliver(self._next(), on_progress)

    async def aclose(self) -> None:
        self.closed = True


class GatedTransport(FakeTransport):
    """Transport whose calls block until ``gate`` is set.

    Create it inside a running test so its events bind to the test loop.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        super().__init__(responses)
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def send(self, request: TransportRequest, signal, on_progress=None) -> ApiResponse:
        self.calls.append(request)
        self.started.set()
        await self.gate.wait()
        return await self._deliver(self._next(), on_progress)


@pytest.fixture
def settings() -> CallApiSettings:
    """Settings with built-in defaults regardless of the environment."""
    return CallApiSettings(
        timeout=None,
        retry_attempts=0,
        dedupe_strategy="cancel",
        result_mode="all",
        debug=False,
        verify_ssl=True,
    )


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create a fake transport answering 200 {"ok": true}."""
    return FakeTransport()


@pytest.fixture
def make_client(settings: CallApiSettings):
    """Factory for clients bound to a transport."""

    def _make(transport: Any, **config: Any) -> AsyncCallApiClient:
        config.setdefault("base_url", "https://api.example.com")
        return AsyncCallApiClient(ClientConfig(transport=transport, **config), settings=settings)

    return _make
