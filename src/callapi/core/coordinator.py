"""
Lifecycle coordinator: runs one logical call from key resolution to release.

States of a call:

    Idle -> KeyResolved -> Registered -> Attempting -> (RetryWait -> Attempting)*
         -> Settled -> Released

A deferred duplicate goes from Registered straight to awaiting the shared
outcome and never enters Attempting. Every call runs its own terminal stages
(``on_success`` / ``on_error`` then ``on_finally``) on the settled outcome.
"""
import asyncio
import logging
from typing import Any, Optional, Sequence, Union

from ..cancellation import (
    AbortController,
    AbortSignal,
    any_signal,
    arm_timeout,
    run_with_signal,
    sleep_with_signal,
)
from ..config import ResolvedOptions
from ..dedupe import InFlightEntry, InFlightRegistry, resolve_dedupe_key
from ..errors import AbortError, CallApiError, HookError, HTTPError, SerializationError, classify_exception
from ..hooks import HookPipeline, Plugin, run_plugin_setup
from ..retry import RetryPolicy
from ..tracing import trace_error, trace_request, trace_response
from ..types import (
    ApiResponse,
    AttemptState,
    CallApiResult,
    HookContext,
    HookStage,
    HooksMode,
    HooksOrder,
    ProgressCallback,
    RequestDescriptor,
    ResultMode,
    StreamProgressEvent,
    Transport,
)
from .request_builder import parse_body, to_transport_request
from .validation import run_validator

logger = logging.getLogger("callapi.coordinator")


def as_abort_error(reason: Optional[BaseException]) -> CallApiError:
    """Normalize an abort reason into the error taxonomy."""
    if isinstance(reason, CallApiError):
        return reason
    if reason is None:
        return AbortError("The operation was aborted")
    return AbortError(str(reason) or "The operation was aborted", cause=reason)


class LifecycleCoordinator:
    """
    Orchestrates dedupe, attempts, retries, hooks and result shaping.

    Example:
        coordinator = LifecycleCoordinator(HttpxTransport(), InFlightRegistry())
        result = await coordinator.run(descriptor)
    """

    def __init__(
        self,
        transport: Transport,
        registry: InFlightRegistry,
        plugins: Sequence[Plugin] = (),
        hooks_order: Union[HooksOrder, str] = HooksOrder.PLUGINS_FIRST,
        hooks_mode: Union[HooksMode, str] = HooksMode.SEQUENTIAL,
    ):
        self._transport = transport
        self._registry = registry
        self._plugins = list(plugins)
        self._hooks_order = HooksOrder(hooks_order)
        self._hooks_mode = HooksMode(hooks_mode)

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    def compose_pipeline(self, options: ResolvedOptions) -> HookPipeline:
        return HookPipeline.compose(
            plugins=self._plugins,
            main_hooks=options.hooks,
            order=self._hooks_order,
            mode=self._hooks_mode,
        )

    async def run(self, request: RequestDescriptor) -> Any:
        """
        Run one logical call.

        Returns:
            CallApiResult, or the data / error alone depending on ``result_mode``

        Raises:
            CallApiError: Only when ``throw_on_error`` selects the outcome
        """
        options = request.options
        if options is None:
            raise ValueError("RequestDescriptor.options is required; build it with resolve_options()")

        pipeline = self.compose_pipeline(options)
        context = HookContext(
            request=request,
            options=options,
            signal=request.signal,
            meta=dict(options.meta),
        )

        try:
            request = await run_plugin_setup(self._plugins, request)
        except Exception as e:
            error = e if isinstance(e, CallApiError) else HookError(f"plugin setup failed: {e}", stage="setup", cause=e)
            result = await self._run_terminal(context, pipeline, CallApiResult(error=error))
            return self._finalize(result, options)

        context.request = request
        key = resolve_dedupe_key(request)
        context.dedupe_key = key
        logger.debug(f"LifecycleCoordinator.run: {request.method} {request.url} key={key}")

        acquired = self._registry.acquire(key, options.dedupe_strategy)
        entry = acquired.entry
        try:
            if acquired.is_new:
                result = await self._lead(context, pipeline, entry)
            else:
                result = await self._join(context, entry)
            result = await self._run_terminal(context, pipeline, result)
        finally:
            self._registry.release(key, entry)

        return self._finalize(result, options)

    async def _join(self, context: HookContext, entry: InFlightEntry) -> CallApiResult:
        logger.debug(f"LifecycleCoordinator: awaiting shared outcome for key={entry.key}")
        try:
            return await run_with_signal(asyncio.shield(entry.future), context.request.signal)
        except Exception as e:
            # Only this caller's own signal can interrupt the wait
            return CallApiResult(error=as_abort_error(e))

    async def _lead(
        self,
        context: HookContext,
        pipeline: HookPipeline,
        entry: Optional[InFlightEntry],
    ) -> CallApiResult:
        result: Optional[CallApiResult] = None
        try:
            result = await self._run_attempts(context, pipeline, entry)
            return result
        finally:
            if entry is not None and not entry.settled:
                if result is None:
                    result = CallApiResult(error=AbortError("The request was cancelled before it settled"))
                self._registry.settle(entry.key, entry, result)

    async def _run_attempts(
        self,
        context: HookContext,
        pipeline: HookPipeline,
        entry: Optional[InFlightEntry],
    ) -> CallApiResult:
        options = context.options
        policy = RetryPolicy(options.retry)

        controller = entry.controller if entry is not None else AbortController()
        call_signal, detach = any_signal(context.request.signal, controller.signal)
        context.signal = call_signal
        context._abort_callback = controller.abort

        try:
            attempt = AttemptState(index=0, request=context.request)
            while True:
                context.attempt = attempt
                result = await self._attempt(context, pipeline, call_signal, attempt)
                if result.error is None:
                    break

                error = result.error
                attempt.outcome = error.kind
                context.error = error
                context.response = result.response

                decision = await policy.decide(attempt, error, context)
                logger.debug(
                    f"LifecycleCoordinator: attempt {attempt.index} failed with {error.name}, "
                    f"retry={decision.retry} ({decision.reason})"
                )
                if not decision.retry or call_signal.aborted:
                    break

                context.cancel_retry = False
                try:
                    await pipeline.run(HookStage.RETRY, context)
                except CallApiError as e:
                    result = CallApiResult(error=e, response=result.response)
                    break
                if context.cancel_retry:
                    logger.debug("LifecycleCoordinator: retry cancelled by on_retry hook")
                    break

                logger.debug(f"LifecycleCoordinator: retrying in {decision.delay_seconds:.3f}s")
                try:
                    await sleep_with_signal(decision.delay_seconds, call_signal)
                except Exception as e:
                    result = CallApiResult(error=as_abort_error(e), response=result.response)
                    break

                attempt = AttemptState(index=attempt.index + 1, request=context.request)
        finally:
            detach()

        # A call aborted mid-flight (superseded, cancelled) never settles successfully
        if call_signal.aborted and result.error is None:
            result = CallApiResult(error=as_abort_error(call_signal.reason), response=result.response)

        return result

    async def _attempt(
        self,
        context: HookContext,
        pipeline: HookPipeline,
        call_signal: AbortSignal,
        attempt: AttemptState,
    ) -> CallApiResult:
        options = context.options
        timeout_controller = AbortController()
        timer = arm_timeout(timeout_controller, options.timeout)
        signal, detach = any_signal(call_signal, timeout_controller.signal)
        response: Optional[ApiResponse] = None

        try:
            await pipeline.run(HookStage.REQUEST, context)
            attempt.request = context.request
            signal.throw_if_aborted()

            wire = to_transport_request(context.request)
            if options.debug:
                trace_request(wire, attempt.index)

            on_progress = self._progress_callback(context, pipeline)
            response = await run_with_signal(self._transport.send(wire, signal, on_progress), signal)
            context.response = response

            if options.debug:
                trace_response(response)

            data = self._read_response(response, options)
            return CallApiResult(data=data, response=response)
        except CallApiError as e:
            return CallApiResult(error=e, response=response or e.response)
        except Exception as e:
            if signal.aborted and e is signal.reason:
                return CallApiResult(error=as_abort_error(e), response=response)
            return CallApiResult(error=classify_exception(e), response=response)
        finally:
            if timer is not None:
                timer.cancel()
            detach()

    def _progress_callback(self, context: HookContext, pipeline: HookPipeline) -> Optional[ProgressCallback]:
        if not pipeline.has(HookStage.RESPONSE_STREAM):
            return None

        async def on_progress(event: StreamProgressEvent) -> None:
            context.progress = event
            await pipeline.run(HookStage.RESPONSE_STREAM, context)

        return on_progress

    def _read_response(self, response: ApiResponse, options: ResolvedOptions) -> Any:
        if response.ok:
            data = parse_body(response.content, response.text, options)
            return run_validator(data, options.response_validator, response)

        try:
            error_data = parse_body(response.content, response.text, options)
        except SerializationError:
            error_data = response.text
        error_data = run_validator(error_data, options.error_validator, response, label="error")

        message = f"Request failed with status {response.status}"
        if response.status_text:
            message = f"{message} {response.status_text}"
        raise HTTPError(message, status=response.status, error_data=error_data, response=response)

    async def _run_terminal(
        self,
        context: HookContext,
        pipeline: HookPipeline,
        result: CallApiResult,
    ) -> CallApiResult:
        context.response = result.response

        if result.error is None:
            context.data = result.data
            context.error = None
            try:
                await pipeline.run(HookStage.SUCCESS, context)
            except CallApiError as e:
                result = CallApiResult(error=e, response=result.response)
            else:
                if context.data is not result.data:
                    result = CallApiResult(data=context.data, response=result.response)

        if result.error is not None:
            context.data = None
            context.error = result.error
            try:
                await pipeline.run(HookStage.ERROR, context)
            except CallApiError as e:
                result = CallApiResult(error=e, response=result.response)
                context.error = e

        await pipeline.run_finally(context)

        if result.error is not None:
            logger.debug(f"LifecycleCoordinator: settled with {result.error.name}: {result.error.message}")
            if context.options.debug:
                trace_error(result.error)
        else:
            logger.debug("LifecycleCoordinator: settled with success")

        return result

    def _finalize(self, result: CallApiResult, options: ResolvedOptions) -> Any:
        error = result.error
        if error is not None and _should_throw(options.throw_on_error, error):
            raise error

        if options.result_mode == ResultMode.ONLY_SUCCESS:
            return result.data
        if options.result_mode == ResultMode.ONLY_ERROR:
            return result.error
        return result


def _should_throw(throw_on_error: Any, error: CallApiError) -> bool:
    if callable(throw_on_error):
        try:
            return bool(throw_on_error(error))
        except Exception:
            logger.warning("LifecycleCoordinator: throw_on_error predicate raised, returning the result", exc_info=True)
            return False
    return bool(throw_on_error)
