"""
In-flight registry: at most one live call per dedupe key per client.

All registry operations are synchronous. Under asyncio they cannot be
interleaved with another task, so two concurrent ``acquire`` calls for one key
never both observe ``is_new=True``.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..cancellation import AbortController
from ..errors import AbortError
from ..types import CallApiResult, DedupeStrategy

logger = logging.getLogger("callapi.dedupe.registry")


class DedupeEventType(str, Enum):
    """Event types for registry operations."""

    LEAD = "dedupe:lead"
    JOIN = "dedupe:join"
    CANCEL = "dedupe:cancel"
    SETTLE = "dedupe:settle"
    RELEASE = "dedupe:release"


@dataclass
class DedupeEvent:
    """Registry event."""

    type: DedupeEventType
    key: str
    timestamp: float
    metadata: Optional[Dict[str, Any]] = None


DedupeEventListener = Callable[[DedupeEvent], None]
"""Event listener type."""


@dataclass(eq=False)
class InFlightEntry:
    """In-flight call tracker."""

    key: str
    """Dedupe key of the call."""

    strategy: DedupeStrategy
    """Strategy of the call that created the entry."""

    future: asyncio.Future
    """Resolves with the call's settled CallApiResult."""

    controller: AbortController = field(default_factory=AbortController)
    """Aborts the call: supersession or manual cancel."""

    waiters: int = 1
    """Number of calls waiting on this entry, the leader included."""

    started_at: float = field(default_factory=time.time)
    """When the call was initiated (Unix timestamp)."""

    settled: bool = False
    """Single-assignment settlement flag."""

    superseded: bool = False
    """Set once the entry is cancelled or replaced; the call must not retry."""

    def settle(self, result: CallApiResult) -> bool:
        """
        Publish the call's outcome to every waiter.

        Returns:
            False if the entry had already been settled
        """
        if self.settled:
            return False
        self.settled = True
        if not self.future.done():
            self.future.set_result(result)
        return True


@dataclass
class AcquireResult:
    """Result of ``InFlightRegistry.acquire``."""

    is_new: bool
    """True when the caller must run the call itself."""

    entry: Optional[InFlightEntry] = None
    """The entry to run or to wait on. None for the ``none`` strategy."""


class InFlightRegistry:
    """
    Per-client map from dedupe key to the call in progress.

    Example:
        registry = InFlightRegistry()

        acquired = registry.acquire(key, DedupeStrategy.DEFER)
        if acquired.is_new:
            result = await run_call(acquired.entry.controller.signal)
            acquired.entry.settle(result)
        else:
            result = await acquired.entry.future
        registry.release(key, acquired.entry)
    """

    def __init__(self) -> None:
        self._entries: Dict[str, InFlightEntry] = {}
        self._listeners: Set[DedupeEventListener] = set()

    def acquire(self, key: str, strategy: DedupeStrategy) -> AcquireResult:
        """
        Register a call for ``key`` according to ``strategy``.

        - ``none``: the registry is not touched
        - no live entry: a new entry is created
        - ``cancel``: the live entry is aborted and replaced
        - ``defer``: the caller joins the live entry
        """
        strategy = DedupeStrategy(strategy)
        if strategy == DedupeStrategy.NONE:
            return AcquireResult(is_new=True, entry=None)

        existing = self._entries.get(key)
        if existing is not None and existing.settled:
            existing = None

        if existing is not None and strategy == DedupeStrategy.DEFER:
            existing.waiters += 1
            logger.debug(f"InFlightRegistry.acquire: joining key={key}, waiters={existing.waiters}")
            self._emit(DedupeEventType.JOIN, key, {"waiters": existing.waiters})
            return AcquireResult(is_new=False, entry=existing)

        if existing is not None:
            self._supersede(
                existing,
                AbortError("Duplicate request detected - aborting previous request"),
            )

        entry = InFlightEntry(
            key=key,
            strategy=strategy,
            future=asyncio.get_running_loop().create_future(),
        )
        self._entries[key] = entry

        logger.debug(f"InFlightRegistry.acquire: leading key={key}, strategy={strategy.value}")
        self._emit(DedupeEventType.LEAD, key, {"strategy": strategy.value})
        return AcquireResult(is_new=True, entry=entry)

    def release(self, key: str, entry: Optional[InFlightEntry]) -> None:
        """
        Drop one waiter from ``entry``; remove it once settled with no waiters left.

        A stale entry (already replaced under ``key``) is never removed from the map.
        """
        if entry is None:
            return

        entry.waiters = max(0, entry.waiters - 1)
        self._emit(DedupeEventType.RELEASE, key, {"waiters": entry.waiters})

        if entry.waiters == 0 and entry.settled and self._entries.get(key) is entry:
            del self._entries[key]
            logger.debug(f"InFlightRegistry.release: removed key={key}")

    def settle(self, key: str, entry: InFlightEntry, result: CallApiResult) -> bool:
        """Settle ``entry`` with ``result`` and notify listeners."""
        if not entry.settle(result):
            return False
        self._emit(
            DedupeEventType.SETTLE,
            key,
            {
                "waiters": entry.waiters,
                "ok": result.error is None,
                "duration_seconds": time.time() - entry.started_at,
            },
        )
        return True

    def cancel(self, key: str, reason: Optional[BaseException] = None) -> bool:
        """
        Abort the live call for ``key``.

        Returns:
            False when no live call exists for the key
        """
        entry = self._entries.get(key)
        if entry is None or entry.settled:
            return False
        self._supersede(entry, reason or AbortError("Request was cancelled"))
        return True

    def cancel_all(self, reason: Optional[BaseException] = None) -> int:
        """Abort every live call. Returns the number of calls aborted."""
        cancelled = 0
        for key in list(self._entries):
            if self.cancel(key, reason):
                cancelled += 1
        return cancelled

    def _supersede(self, entry: InFlightEntry, reason: BaseException) -> None:
        entry.superseded = True
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
        logger.debug(f"InFlightRegistry: aborting key={entry.key} ({reason})")
        self._emit(DedupeEventType.CANCEL, entry.key, {"reason": str(reason)})
        entry.controller.abort(reason)

    def get(self, key: str) -> Optional[InFlightEntry]:
        """Get the live entry for a key."""
        entry = self._entries.get(key)
        if entry is None or entry.settled:
            return None
        return entry

    def has(self, key: str) -> bool:
        """Check if a call is in-flight for a key."""
        return self.get(key) is not None

    def size(self) -> int:
        """Get current number of entries."""
        return len(self._entries)

    def keys(self) -> List[str]:
        """Get the keys of all entries."""
        return list(self._entries)

    def on(self, listener: DedupeEventListener) -> Callable[[], None]:
        """Add event listener."""
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def off(self, listener: DedupeEventListener) -> None:
        """Remove event listener."""
        self._listeners.discard(listener)

    def _emit(self, event_type: DedupeEventType, key: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Emit an event to all listeners."""
        event = DedupeEvent(type=event_type, key=key, timestamp=time.time(), metadata=metadata)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(f"InFlightRegistry: listener failed for {event_type.value}", exc_info=True)
