"""
Async client: the per-call entry point over the lifecycle coordinator.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..config import CallOptions, ClientConfig, resolve_options, validate_config
from ..dedupe import InFlightRegistry, resolve_dedupe_key
from ..errors import AbortError
from ..settings import CallApiSettings, get_settings
from ..transport import HttpxTransport
from ..types import RequestDescriptor, Transport
from .coordinator import LifecycleCoordinator
from .request_builder import create_descriptor

logger = logging.getLogger("callapi.client")


class AsyncCallApiClient:
    """
    Asynchronous client with request deduplication, retries and hooks.

    Each client owns its in-flight registry; dedupe never crosses clients.

    Example:
        async with AsyncCallApiClient(ClientConfig(base_url="https://api.example.com")) as client:
            result = await client.get("/users", dedupe_strategy="defer")
            if result.error is not None:
                ...
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        settings: Optional[CallApiSettings] = None,
    ):
        self._config = config or ClientConfig()
        validate_config(self._config)
        self._settings = settings or get_settings()

        if self._config.transport is not None:
            self._transport: Transport = self._config.transport
        else:
            verify = None if self._settings.verify_ssl else False
            self._transport = HttpxTransport(client=self._config.httpx_client, verify=verify)

        self._registry = InFlightRegistry()
        self._coordinator = LifecycleCoordinator(
            transport=self._transport,
            registry=self._registry,
            plugins=self._config.plugins,
            hooks_order=self._config.hooks_order,
            hooks_mode=self._config.hooks_mode,
        )
        self._closed = False

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def registry(self) -> InFlightRegistry:
        """The client's in-flight registry."""
        return self._registry

    @property
    def closed(self) -> bool:
        return self._closed

    def _call_options(self, options: Optional[CallOptions], overrides: Dict[str, Any]) -> CallOptions:
        options = options or CallOptions()
        if overrides:
            options = replace(options, **overrides)
        return options

    def build_request(
        self,
        path: str,
        options: Optional[CallOptions] = None,
        **overrides: Any,
    ) -> RequestDescriptor:
        """Build the request descriptor a call would run with."""
        call = self._call_options(options, overrides)
        resolved = resolve_options(self._config, call, self._settings)

        query: Dict[str, Any] = dict(self._config.query or {})
        query.update(call.query or {})

        return create_descriptor(
            base_url=self._config.base_url,
            path=path,
            options=resolved,
            base_headers=self._config.headers,
            headers=call.headers,
            query=query,
            body=call.body,
            signal=call.signal if call.signal is not None else self._config.signal,
        )

    async def request(
        self,
        path: str,
        options: Optional[CallOptions] = None,
        **overrides: Any,
    ) -> Any:
        """
        Make a call.

        Args:
            path: Path relative to ``base_url``, or an absolute URL
            options: Per-call options
            **overrides: CallOptions fields, applied over ``options``

        Returns:
            CallApiResult by default; see ``result_mode``
        """
        if self._closed:
            raise RuntimeError("Client has been closed")

        descriptor = self.build_request(path, options, **overrides)
        return await self._coordinator.run(descriptor)

    async def get(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """GET request."""
        return await self.request(path, options, method="GET", **overrides)

    async def post(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """POST request."""
        return await self.request(path, options, method="POST", **overrides)

    async def put(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """PUT request."""
        return await self.request(path, options, method="PUT", **overrides)

    async def patch(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """PATCH request."""
        return await self.request(path, options, method="PATCH", **overrides)

    async def delete(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """DELETE request."""
        return await self.request(path, options, method="DELETE", **overrides)

    async def head(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """HEAD request."""
        return await self.request(path, options, method="HEAD", **overrides)

    async def options(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> Any:
        """OPTIONS request."""
        return await self.request(path, options, method="OPTIONS", **overrides)

    def dedupe_key_for(self, path: str, options: Optional[CallOptions] = None, **overrides: Any) -> str:
        """Dedupe key a call with these arguments would use (before plugin setup)."""
        return resolve_dedupe_key(self.build_request(path, options, **overrides))

    def cancel(self, key: str) -> bool:
        """Abort the in-flight call for ``key``; its waiters get an AbortError."""
        return self._registry.cancel(key)

    def cancel_all(self) -> int:
        """Abort every in-flight call of this client."""
        return self._registry.cancel_all()

    def in_flight(self) -> List[str]:
        """Keys of the calls currently in flight."""
        return [key for key in self._registry.keys() if self._registry.has(key)]

    async def close(self) -> None:
        """Abort every in-flight call and close the transport."""
        if self._closed:
            return
        self._closed = True

        cancelled = self._registry.cancel_all(AbortError("Client was closed"))
        if cancelled:
            logger.debug(f"AsyncCallApiClient.close: aborted {cancelled} in-flight call(s)")
        await self._transport.aclose()

    async def __aenter__(self) -> "AsyncCallApiClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()
