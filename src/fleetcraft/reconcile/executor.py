"""Executor for applying plans through resource providers.

Every provider call resolves its attributes against the in-memory snapshot
right before it runs, so values produced earlier in the same apply (ids
returned by create) flow into later calls. The snapshot is written after
every successful change.
"""
import asyncio
import logging
import time
from typing import Any, Optional

from ..errors import ProviderError, ProviderTimeoutError, ValidationError
from ..providers import ProviderRegistry
from ..state import ResourceState, StateSnapshot, StateStore
from ..utils.audit_log import log_change
from ..utils.logging_config import timed_section
from ..utils.retry import call_with_policy
from ..values import resolve_value
from .schema import (
    ApplyOptions,
    ApplyResult,
    Change,
    ChangeAction,
    ChangeOutcome,
    ChangeStatus,
    Plan,
)

logger = logging.getLogger(__name__)


class PlanExecutor:
    """Execute plans against providers."""

    def __init__(self, providers: ProviderRegistry, store: Optional[StateStore] = None):
        """
        Initialize executor.

        Args:
            providers: Registry routing resource types to providers
            store: Where the snapshot is persisted after each change (optional)
        """
        self.providers = providers
        self.store = store

    async def apply(
        self,
        plan: Plan,
        snapshot: Optional[StateSnapshot] = None,
        options: Optional[ApplyOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ApplyResult:
        """
        Apply a plan.

        Args:
            plan: Plan to apply; consumed by this call
            snapshot: Starting snapshot, defaults to the one the plan was made from
            options: Parallelism, failure policy, timeout and retry
            cancel_event: Once set, no further change starts

        Returns:
            ApplyResult with one outcome per change in plan order

        Raises:
            PlanConsumedError: plan was applied before
        """
        plan.consume()
        options = options or ApplyOptions()
        cancel_event = cancel_event or asyncio.Event()
        run = _ApplyRun(self, plan, snapshot if snapshot is not None else plan.prior,
                        options, cancel_event)

        if options.parallelism > 1:
            await run.run_parallel()
        else:
            await run.run_sequential()

        result = ApplyResult(
            outcomes=[run.outcomes[change.key] for change in plan.changes],
            snapshot=run.snapshot,
            cancelled=cancel_event.is_set() and any(
                o.status == ChangeStatus.CANCELLED for o in run.outcomes.values()
            ),
        )
        result.outputs, result.warnings = self._evaluate_outputs(plan, run.snapshot)

        counts = {s.value: len(result.by_status(s)) for s in ChangeStatus}
        logger.info(
            f"Apply finished: {counts['applied']} applied, {counts['failed']} failed, "
            f"{counts['skipped']} skipped, {counts['cancelled']} cancelled"
        )
        return result

    @staticmethod
    def _evaluate_outputs(plan: Plan, snapshot: StateSnapshot) -> tuple[dict[str, Any], list[str]]:
        scope = {**snapshot.attribute_scope(), "var": plan.variables}
        outputs: dict[str, Any] = {}
        warnings: list[str] = []
        for name, value in plan.outputs.items():
            try:
                outputs[name] = resolve_value(value, scope)
            except ValidationError as e:
                message = f"Output '{name}' omitted: {e}"
                logger.warning(message)
                warnings.append(message)
        return outputs, warnings

    async def call_provider(self, change: Change, snapshot: StateSnapshot,
                            options: ApplyOptions,
                            variables: dict[str, Any]) -> Optional[ResourceState]:
        """Run one change; return the new resource state, None for deletes."""
        ref = change.ref
        provider = self.providers.resolve(ref.type)

        async def guarded(func, description: str):
            return await call_with_policy(
                func,
                timeout=options.timeout,
                policy=options.retry,
                timeout_error=ProviderTimeoutError,
                description=description,
            )

        if change.action == ChangeAction.DELETE:
            resource_id = str((change.before or {}).get("id", ""))
            if not change.deposed:
                current = snapshot.get(ref)
                if current is not None:
                    resource_id = current.id
            async with timed_section("delete", target=str(ref), deposed=change.deposed):
                await guarded(lambda: provider.delete(ref.type, resource_id), f"delete {ref}")
            return None

        scope = {**snapshot.attribute_scope(), "var": variables}
        attributes = {attr: resolve_value(value, scope) for attr, value in change.config.items()}

        if change.action == ChangeAction.CREATE:
            async with timed_section("create", target=str(ref)):
                result = await guarded(lambda: provider.create(ref.type, attributes), f"create {ref}")
        else:
            current = snapshot.get(ref)
            if current is None:
                raise ProviderError(f"{ref} is not in state, cannot update")
            async with timed_section("update", target=str(ref)):
                result = await guarded(
                    lambda: provider.update(ref.type, current.id, attributes), f"update {ref}"
                )

        if not isinstance(result, dict) or "id" not in result:
            raise ProviderError(f"Provider returned no id for {ref}")

        previous = snapshot.get(ref)
        return ResourceState(
            ref=ref,
            id=str(result["id"]),
            attributes=dict(result),
            dependencies=change.dependencies,
            extra=dict(previous.extra) if previous is not None else {},
        )


class _ApplyRun:
    """Mutable bookkeeping for one apply call."""

    def __init__(self, executor: PlanExecutor, plan: Plan, snapshot: StateSnapshot,
                 options: ApplyOptions, cancel_event: asyncio.Event):
        self.executor = executor
        self.plan = plan
        self.snapshot = snapshot
        self.options = options
        self.cancel_event = cancel_event
        self.outcomes: dict[str, ChangeOutcome] = {}
        self.halted = False
        self._state_lock = asyncio.Lock()

    def _blocked(self, change: Change) -> Optional[ChangeStatus]:
        """Status for a change that must not start, None when it may run."""
        if self.cancel_event.is_set():
            return ChangeStatus.CANCELLED
        if self.halted:
            return ChangeStatus.SKIPPED
        for pred in self.plan.edges.get(change.key, ()):
            outcome = self.outcomes.get(pred)
            if outcome is not None and outcome.status != ChangeStatus.APPLIED:
                return (ChangeStatus.CANCELLED if outcome.status == ChangeStatus.CANCELLED
                        else ChangeStatus.SKIPPED)
        return None

    def _record_unstarted(self, change: Change, status: ChangeStatus) -> None:
        reason = "cancelled" if status == ChangeStatus.CANCELLED else "skipped after failure"
        self.outcomes[change.key] = ChangeOutcome(change=change, status=status, error=reason)
        logger.info(f"{change.key}: {status.value}")

    async def _execute(self, change: Change) -> None:
        start = time.perf_counter()
        logger.info(f"{change.key}: starting")
        try:
            state = await self.executor.call_provider(
                change, self.snapshot, self.options, self.plan.variables
            )
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            self.outcomes[change.key] = ChangeOutcome(
                change=change, status=ChangeStatus.FAILED, error=str(e), duration_ms=elapsed,
            )
            logger.error(f"{change.key}: failed: {e}")
            log_change(str(change.ref), change.key.split(":")[0], "failed", error=str(e))
            if self.options.on_failure == "halt":
                self.halted = True
            return

        async with self._state_lock:
            # Merge onto the latest snapshot
            merged = self.snapshot
            if change.action == ChangeAction.DELETE:
                if change.deposed:
                    merged = merged.forget_deposed(change.ref, str((change.before or {}).get("id", "")))
                else:
                    merged = merged.remove(change.ref)
            elif state is not None:
                previous = merged.get(change.ref)
                if change.replace and previous is not None:
                    merged = merged.depose(previous)
                merged = merged.put(state)
            self.snapshot = merged
            if self.executor.store is not None:
                try:
                    self.snapshot = self.executor.store.save(merged)
                except (OSError, TypeError, ValueError) as e:
                    error = f"applied but state could not be saved: {e}"
                    self.outcomes[change.key] = ChangeOutcome(
                        change=change, status=ChangeStatus.FAILED, error=error,
                        attributes=dict(state.attributes) if state is not None else None,
                        duration_ms=(time.perf_counter() - start) * 1000,
                    )
                    logger.error(f"{change.key}: {error}")
                    log_change(str(change.ref), change.key.split(":")[0], "failed", error=error)
                    self.halted = True
                    return

        elapsed = (time.perf_counter() - start) * 1000
        self.outcomes[change.key] = ChangeOutcome(
            change=change, status=ChangeStatus.APPLIED,
            attributes=dict(state.attributes) if state is not None else None,
            duration_ms=elapsed,
        )
        logger.info(f"{change.key}: applied in {elapsed:.0f}ms")
        log_change(str(change.ref), change.key.split(":")[0], "applied",
                   attributes=state.attributes if state is not None else None)

    async def run_sequential(self) -> None:
        for change in self.plan.changes:
            status = self._blocked(change)
            if status is not None:
                self._record_unstarted(change, status)
                continue
            await self._execute(change)

    async def run_parallel(self) -> None:
        done = {change.key: asyncio.Event() for change in self.plan.changes}
        semaphore = asyncio.Semaphore(self.options.parallelism)

        async def worker(change: Change) -> None:
            try:
                for pred in self.plan.edges.get(change.key, ()):
                    if pred in done:
                        await done[pred].wait()
                status = self._blocked(change)
                if status is not None:
                    self._record_unstarted(change, status)
                    return
                async with semaphore:
                    status = self._blocked(change)
                    if status is not None:
                        self._record_unstarted(change, status)
                        return
                    await self._execute(change)
            finally:
                done[change.key].set()

        await asyncio.gather(*(worker(change) for change in self.plan.changes))
