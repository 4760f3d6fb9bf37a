"""
Hook pipeline: ordered, stage-scoped interception points around a call.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Union

from ..errors import CallApiError, HookError
from ..types import Hook, HookContext, HookStage, HooksMode, HooksOrder

logger = logging.getLogger("callapi.hooks")

HookInput = Union[Hook, Sequence[Hook], None]


def _as_list(value: HookInput) -> List[Hook]:
    if value is None:
        return []
    if callable(value):
        return [value]
    return list(value)


@dataclass
class Hooks:
    """Hook registrations, one slot per stage. Each slot takes a hook or a list."""

    on_request: HookInput = None
    on_retry: HookInput = None
    on_success: HookInput = None
    on_error: HookInput = None
    on_response_stream: HookInput = None
    on_finally: HookInput = None

    def for_stage(self, stage: HookStage) -> List[Hook]:
        """Get the hooks registered for ``stage``."""
        return _as_list(getattr(self, stage.value))


@dataclass(frozen=True)
class HookRecord:
    """One hook bound to one stage, tagged with where it came from."""

    stage: HookStage
    hook: Hook
    source: str = "main"


@dataclass
class HookPipeline:
    """
    Ordered hook records for one call.

    Example:
        pipeline = HookPipeline.compose(
            plugins=[logging_plugin],
            main_hooks=[Hooks(on_request=add_trace_id)],
        )
        await pipeline.run(HookStage.REQUEST, context)
    """

    records: List[HookRecord] = field(default_factory=list)
    mode: HooksMode = HooksMode.SEQUENTIAL

    @classmethod
    def compose(
        cls,
        plugins: Iterable = (),
        main_hooks: Iterable[Hooks] = (),
        order: Union[HooksOrder, str] = HooksOrder.PLUGINS_FIRST,
        mode: Union[HooksMode, str] = HooksMode.SEQUENTIAL,
    ) -> "HookPipeline":
        """
        Merge plugin hooks and user hooks into stage order.

        Args:
            plugins: Plugins whose ``hooks`` participate
            main_hooks: User hooks, client level first, then call level
            order: Whether plugin hooks precede user hooks within a stage
            mode: Sequential or parallel execution within a stage

        Returns:
            HookPipeline
        """
        plugin_records: List[HookRecord] = []
        main_records: List[HookRecord] = []

        for stage in HookStage:
            for plugin in plugins:
                if plugin.hooks is None:
                    continue
                for hook in plugin.hooks.for_stage(stage):
                    plugin_records.append(HookRecord(stage, hook, f"plugin:{plugin.id}"))
            for hooks in main_hooks:
                for hook in hooks.for_stage(stage):
                    main_records.append(HookRecord(stage, hook, "main"))

        if HooksOrder(order) == HooksOrder.PLUGINS_FIRST:
            records = plugin_records + main_records
        else:
            records = main_records + plugin_records

        return cls(records=records, mode=HooksMode(mode))

    def hooks_for(self, stage: HookStage) -> List[Hook]:
        return [record.hook for record in self.records if record.stage == stage]

    def has(self, stage: HookStage) -> bool:
        return any(record.stage == stage for record in self.records)

    async def run(self, stage: HookStage, context: HookContext) -> None:
        """
        Run every hook of ``stage``.

        The first failing hook stops the stage. A raised CallApiError passes
        through unchanged, anything else is wrapped in HookError.

        Raises:
            CallApiError: When a hook fails
        """
        if stage == HookStage.FINALLY:
            await self.run_finally(context)
            return

        hooks = self.hooks_for(stage)
        if not hooks:
            return

        try:
            if self.mode == HooksMode.PARALLEL:
                await asyncio.gather(*(_invoke(hook, context) for hook in hooks))
            else:
                for hook in hooks:
                    await _invoke(hook, context)
        except CallApiError:
            raise
        except Exception as e:
            raise HookError(f"{stage.value} hook failed: {e}", stage=stage.value, cause=e) from e

    async def run_finally(self, context: HookContext) -> List[BaseException]:
        """
        Run every ``on_finally`` hook, even after failures.

        Failures are logged and returned; they never change the call's result.
        """
        failures: List[BaseException] = []
        for hook in self.hooks_for(HookStage.FINALLY):
            try:
                await _invoke(hook, context)
            except Exception as e:
                logger.exception(f"HookPipeline: on_finally hook {_hook_name(hook)} failed")
                failures.append(e)
        return failures


async def _invoke(hook: Hook, context: HookContext) -> None:
    result = hook(context)
    if inspect.isawaitable(result):
        await result


def _hook_name(hook: Hook) -> str:
    return getattr(hook, "__qualname__", None) or repr(hook)

