"""
Default transport over httpx.AsyncClient.
"""
import logging
import os
from typing import Optional

import httpx

from ..cancellation import AbortSignal, run_with_signal
from ..errors import NetworkError, RequestTimeoutError
from ..types import ApiResponse, ProgressCallback, StreamProgressEvent, TransportRequest

logger = logging.getLogger("callapi.transport")


def _is_ssl_verify_disabled_by_env() -> bool:
    """
    Check if SSL verification is disabled via environment variables.

    Returns True if any of these are set:
    - NODE_TLS_REJECT_UNAUTHORIZED=0
    - SSL_CERT_VERIFY=0
    """
    node_tls = os.environ.get("NODE_TLS_REJECT_UNAUTHORIZED", "")
    ssl_cert_verify = os.environ.get("SSL_CERT_VERIFY", "")
    return node_tls == "0" or ssl_cert_verify == "0"


class HttpxTransport:
    """
    Transport sending requests through ``httpx.AsyncClient``.

    The body is streamed in chunks so progress can be reported and an abort
    stops the read between chunks. Timeouts are enforced by the coordinator's
    abort signal, not by httpx.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        verify: Optional[bool] = None,
    ):
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            if verify is None:
                verify = not _is_ssl_verify_disabled_by_env()
            self._client = httpx.AsyncClient(timeout=None, verify=verify)
            self._owns_client = True

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def send(
        self,
        request: TransportRequest,
        signal: AbortSignal,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ApiResponse:
        """Send ``request`` and read the whole body, honouring ``signal``."""
        return await run_with_signal(self._send(request, signal, on_progress), signal)

    async def _send(
        self,
        request: TransportRequest,
        signal: AbortSignal,
        on_progress: Optional[ProgressCallback],
    ) -> ApiResponse:
        httpx_request = self._client.build_request(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            content=request.content,
        )

        try:
            response = await self._client.send(httpx_request, stream=True)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{type(e).__name__}: {e}", cause=e) from e

        try:
            total = _content_length(response)
            transferred = 0
            chunks = []
            async for chunk in response.aiter_bytes():
                signal.throw_if_aborted()
                chunks.append(chunk)
                transferred += len(chunk)
                if on_progress is not None:
                    await on_progress(StreamProgressEvent(chunk, transferred, total))
            content = b"".join(chunks)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{type(e).__name__}: {e}", cause=e) from e
        finally:
            await response.aclose()

        logger.debug(f"HttpxTransport.send: {request.method} {request.url} -> {response.status_code} ({len(content)} bytes)")

        return ApiResponse(
            status=response.status_code,
            status_text=response.reason_phrase or "",
            headers=dict(response.headers),
            content=content,
            url=str(response.url),
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
