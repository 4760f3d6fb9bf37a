"""
Cooperative cancellation tokens.

An ``AbortController`` owns an ``AbortSignal``. Signals can be composed with
``any_signal`` so that a call aborts when any of its sources does: the caller's
external signal, the call's own controller (dedupe supersession, manual
cancel) or the per-attempt timeout.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from .errors import AbortError, RequestTimeoutError

T = TypeVar("T")

AbortListener = Callable[[BaseException], None]


def _noop() -> None:
    return None


class AbortSignal:
    """Read side of a cancellation token. Aborts at most once."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Optional[BaseException] = None
        self._listeners: List[AbortListener] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def add_listener(self, listener: AbortListener) -> Callable[[], None]:
        """
        Register a callback invoked with the abort reason.

        If the signal is already aborted the listener runs immediately.

        Returns:
            Function that detaches the listener
        """
        if self._aborted:
            listener(self._reason)
            return _noop

        self._listeners.append(listener)

        def detach() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return detach

    def throw_if_aborted(self) -> None:
        if self._aborted:
            raise self._reason

    async def wait(self) -> BaseException:
        """Suspend until the signal aborts, then return the reason."""
        if self._aborted:
            return self._reason

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(reason: BaseException) -> None:
            if not future.done():
                future.set_result(reason)

        detach = self.add_listener(_resolve)
        try:
            return await future
        finally:
            detach()

    def _abort(self, reason: BaseException) -> bool:
        if self._aborted:
            return False

        self._aborted = True
        self._reason = reason

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)
        return True

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self._aborted}, reason={self._reason!r})"


class AbortController:
    """Write side of a cancellation token."""

    def __init__(self) -> None:
        self._signal = AbortSignal()

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    def abort(self, reason: Optional[BaseException] = None) -> bool:
        """
        Abort the signal.

        Args:
            reason: Exception delivered to consumers. Default: AbortError

        Returns:
            False if the signal had already been aborted
        """
        if reason is None:
            reason = AbortError("The operation was aborted")
        return self._signal._abort(reason)


def any_signal(*signals: Optional[AbortSignal]) -> Tuple[AbortSignal, Callable[[], None]]:
    """
    Compose signals into one that aborts when the first source aborts.

    ``None`` entries are ignored. The composed signal carries the reason of the
    first source to abort.

    Returns:
        Tuple of (composed signal, function detaching it from its sources)
    """
    controller = AbortController()
    detachers: List[Callable[[], None]] = []

    for source in signals:
        if source is None:
            continue
        if source.aborted:
            controller.abort(source.reason)
            break
        detachers.append(source.add_listener(controller.abort))

    def detach() -> None:
        for detacher in detachers:
            detacher()
        detachers.clear()

    if controller.signal.aborted:
        detach()

    return controller.signal, detach


def arm_timeout(controller: AbortController, timeout: Optional[float]) -> Optional[asyncio.TimerHandle]:
    """
    Abort ``controller`` with a RequestTimeoutError after ``timeout`` seconds.

    Returns:
        Timer handle to cancel on settlement, or None when no timeout is set
    """
    if timeout is None:
        return None

    loop = asyncio.get_running_loop()
    error = RequestTimeoutError(
        f"Request timed out after {timeout * 1000:.0f}ms",
        timeout=timeout,
    )
    return loop.call_later(timeout, controller.abort, error)


async def run_with_signal(awaitable: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """
    Await ``awaitable`` unless ``signal`` aborts first.

    On abort the underlying task is cancelled and the abort reason is raised.
    When both finish in the same tick the abort wins.
    """
    if signal is None:
        return await awaitable

    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise signal.reason

    task = asyncio.ensure_future(awaitable)
    waiter: asyncio.Future = asyncio.get_running_loop().create_future()

    def _on_abort(reason: BaseException) -> None:
        if not waiter.done():
            waiter.set_result(reason)

    detach = signal.add_listener(_on_abort)
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        detach()
        if not waiter.done():
            waiter.cancel()

    if signal.aborted:
        if not task.done():
            task.cancel()
        # Drain the task so its outcome is never reported as unretrieved
        await asyncio.gather(task, return_exceptions=True)
        raise signal.reason

    return task.result()


async def sleep_with_signal(delay: float, signal: Optional[AbortSignal]) -> None:
    """Sleep for ``delay`` seconds, raising the abort reason if ``signal`` aborts first."""
    await run_with_signal(asyncio.sleep(max(0.0, delay)), signal)
