"""Convergence engine: run playbooks against inventory hosts.

Every host gets its own task; a semaphore bounds how many run at once.
Within a host, plays and actions run strictly in declared order. Hosts
share nothing mutable: facts, registered results and notified handlers are
host-local.
"""
import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from ..errors import ExecutorTimeoutError, HostUnreachableError
from ..executors import RemoteExecutor
from ..inventory import Host, HostInventory
from ..modules import get_module
from ..utils.audit_log import log_action
from ..utils.retry import RetryPolicy, call_with_policy
from ..validation import ValidationResult
from ..values import evaluate, render_raw, truthy
from .parser import PlaybookParser
from .schema import Action, ActionResult, HostResult, Outcome, Play, Playbook, RunResult
from .validator import PlaybookValidator

logger = logging.getLogger(__name__)

DEFAULT_FORKS = 5


class _HostRun:
    """Mutable state of one host during a run."""

    def __init__(self, host: Host):
        self.host = host
        self.result = HostResult(alias=host.alias)
        self.facts: dict[str, Any] = dict(host.facts)
        self.registered: dict[str, Any] = {}
        self.notified: list[tuple[int, str]] = []
        self.facts_gathered = False

    def scope(self, play: Play) -> dict[str, Any]:
        """Expression scope: play vars < host vars < registered results.

        Variables are reachable both bare and under ``var``.
        """
        variables = {**play.variables, **self.host.variables, **self.registered}
        return {
            **variables,
            "var": variables,
            "facts": self.facts,
            "host": self.host.describe(),
        }

    def notify(self, play_index: int, names: tuple[str, ...]) -> None:
        for name in names:
            key = (play_index, name)
            if key not in self.notified:
                self.notified.append(key)
                self.result.notified.append(name)


class ConvergenceEngine:
    """
    Converge hosts to the state a playbook declares.

    Usage:
        engine = ConvergenceEngine(create_executor(), forks=10)
        playbook = engine.load("site.yaml")
        result = await engine.run(playbook, HostInventory.from_file("hosts.yaml"))
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        forks: int = DEFAULT_FORKS,
        timeout: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the engine.

        Args:
            executor: Runs modules on hosts
            forks: Maximum number of hosts worked on at once
            timeout: Per executor call, in seconds
            retry: Retry policy for timed-out executor calls
        """
        if forks < 1:
            raise ValueError("forks must be at least 1")
        self.executor = executor
        self.forks = forks
        self.timeout = timeout
        self.retry = retry
        self.parser = PlaybookParser()
        self.validator = PlaybookValidator()

    def load(self, source: Union[str, Path, list, Mapping[str, Any]]) -> Playbook:
        """Parse a playbook from a YAML path, a list of plays or a mapping."""
        if isinstance(source, (list, Mapping)):
            return self.parser.parse(source)
        return self.parser.load_file(source)

    def validate(self, playbook: Playbook, inventory: Optional[HostInventory] = None) -> ValidationResult:
        return self.validator.validate(playbook, inventory)

    async def run(
        self,
        playbook: Playbook,
        inventory: HostInventory,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Validate and run a playbook.

        Returns:
            RunResult with one HostResult per targeted host, in inventory order

        Raises:
            ValidationError: the playbook is invalid; no executor was called
        """
        validation = self.validate(playbook, inventory)
        for warning in validation.warnings:
            logger.warning(warning)
        validation.raise_for_errors()

        cancel_event = cancel_event or asyncio.Event()
        targets = [set(h.alias for h in inventory.match(play.hosts)) for play in playbook.plays]
        hosts = [h for h in inventory.hosts() if any(h.alias in t for t in targets)]
        semaphore = asyncio.Semaphore(self.forks)

        logger.info(f"Running {len(playbook.plays)} play(s) on {len(hosts)} host(s), forks={self.forks}")

        async def worker(host: Host) -> HostResult:
            async with semaphore:
                run = _HostRun(host)
                await self._run_host(run, playbook, targets, cancel_event)
                return run.result

        results = await asyncio.gather(*(worker(host) for host in hosts))
        run_result = RunResult(
            hosts={r.alias: r for r in results},
            cancelled=any(r.cancelled for r in results),
        )
        for alias, recap in run_result.recap().items():
            logger.info(
                f"{alias}: ok={recap['ok']} changed={recap['changed']} "
                f"unreachable={recap['unreachable']} failed={recap['failed']} skipped={recap['skipped']}"
            )
        return run_result

    async def _run_host(self, run: _HostRun, playbook: Playbook, targets: list[set[str]],
                        cancel_event: asyncio.Event) -> None:
        result = run.result

        for index, play in enumerate(playbook.plays):
            if run.host.alias not in targets[index]:
                continue
            if play.gather_facts and not run.facts_gathered:
                if cancel_event.is_set():
                    result.cancelled = True
                    return
                if not await self._gather_facts(run):
                    return

            for action in play.actions:
                if cancel_event.is_set():
                    result.cancelled = True
                    logger.info(f"{run.host.alias}: cancelled before '{action.name}'")
                    return
                outcome = await self._run_action(run, play, action)
                if outcome.outcome == Outcome.CHANGED:
                    run.notify(index, action.notifies)
                if outcome.outcome == Outcome.FAILED:
                    result.failed = True
                    result.unreachable = outcome.unreachable
                    logger.warning(f"{run.host.alias}: failed at '{action.name}', "
                                   f"skipping remaining actions and handlers")
                    return

        # Handlers may notify later handlers, so the list can grow while iterating
        position = 0
        while position < len(run.notified):
            index, name = run.notified[position]
            position += 1
            if cancel_event.is_set():
                result.cancelled = True
                logger.info(f"{run.host.alias}: cancelled before handler '{name}'")
                return
            play = playbook.plays[index]
            handler = play.handler(name)
            outcome = await self._run_action(run, play, handler)
            if outcome.outcome == Outcome.CHANGED:
                run.notify(index, handler.notifies)
            if outcome.outcome == Outcome.FAILED:
                result.failed = True
                result.unreachable = outcome.unreachable
                return

    async def _gather_facts(self, run: _HostRun) -> bool:
        """Merge executor facts into the host's facts; False when the host failed."""
        start = time.perf_counter()
        try:
            gathered = await call_with_policy(
                lambda: self.executor.gather_facts(run.host),
                timeout=self.timeout,
                policy=self.retry,
                timeout_error=ExecutorTimeoutError,
                description=f"gather facts on {run.host.alias}",
            )
        except Exception as e:
            unreachable = isinstance(e, HostUnreachableError)
            run.result.results.append(ActionResult(
                host=run.host.alias, action="gather facts", module="setup",
                outcome=Outcome.FAILED, error=str(e), unreachable=unreachable,
                duration_ms=(time.perf_counter() - start) * 1000,
            ))
            run.result.failed = True
            run.result.unreachable = unreachable
            logger.error(f"{run.host.alias}: gathering facts failed: {e}")
            return False
        run.facts.update(gathered)
        run.facts_gathered = True
        return True

    async def _run_action(self, run: _HostRun, play: Play, action: Action) -> ActionResult:
        start = time.perf_counter()
        host = run.host
        try:
            outcome = await self._evaluate_and_execute(run, play, action)
        except Exception as e:
            outcome = ActionResult(
                host=host.alias, action=action.name, module=action.module,
                outcome=Outcome.FAILED, error=str(e), handler=action.handler,
                unreachable=isinstance(e, HostUnreachableError),
            )
        outcome.duration_ms = (time.perf_counter() - start) * 1000

        run.result.results.append(outcome)
        if action.register:
            run.registered[action.register] = outcome.registered()

        message = f"{host.alias}: {'handler' if action.handler else 'action'} '{action.name}' -> {outcome.outcome.value}"
        if outcome.outcome == Outcome.FAILED:
            logger.error(f"{message}: {outcome.error}")
        else:
            logger.info(message)
        if outcome.outcome != Outcome.SKIPPED:
            log_action(host.alias, action.name, action.module, outcome.outcome.value,
                       payload=outcome.payload, error=outcome.error)
        return outcome

    async def _evaluate_and_execute(self, run: _HostRun, play: Play, action: Action) -> ActionResult:
        scope = run.scope(play)
        host = run.host

        def result(outcome: Outcome, payload: Optional[dict] = None,
                   error: Optional[str] = None) -> ActionResult:
            return ActionResult(host=host.alias, action=action.name, module=action.module,
                                outcome=outcome, payload=payload or {}, error=error,
                                handler=action.handler)

        if action.loop is None:
            if action.condition is not None and not truthy(evaluate(action.condition, scope)):
                return result(Outcome.SKIPPED, {"skipped_reason": "condition is false"})
            return await self._execute(host, action, scope, result)

        items = self._loop_items(action, scope)
        item_results: list[ActionResult] = []
        for item in items:
            item_scope = {**scope, "item": item}
            if action.condition is not None and not truthy(evaluate(action.condition, item_scope)):
                item_results.append(result(Outcome.SKIPPED))
                continue
            item_result = await self._execute(host, action, item_scope, result)
            item_results.append(item_result)
            if item_result.outcome == Outcome.FAILED:
                break

        payload = {"results": [{"item": item, **r.registered()} for item, r in zip(items, item_results)]}
        failed = next((r for r in item_results if r.outcome == Outcome.FAILED), None)
        if failed is not None:
            return result(Outcome.FAILED, payload, failed.error)
        if any(r.outcome == Outcome.CHANGED for r in item_results):
            return result(Outcome.CHANGED, payload)
        if item_results and all(r.outcome == Outcome.SKIPPED for r in item_results):
            return result(Outcome.SKIPPED, payload)
        return result(Outcome.UNCHANGED, payload)

    @staticmethod
    def _loop_items(action: Action, scope: Mapping[str, Any]) -> list[Any]:
        if isinstance(action.loop, str):
            if "${" in action.loop:
                items = render_raw(action.loop, scope)
            else:
                items = evaluate(action.loop, scope)
        else:
            items = render_raw(action.loop, scope)
        if not isinstance(items, (list, tuple)):
            raise TypeError(f"loop of '{action.name}' must yield a list, got {type(items).__name__}")
        return list(items)

    async def _execute(self, host: Host, action: Action, scope: Mapping[str, Any], result) -> ActionResult:
        params = render_raw(action.parameters, scope)
        get_module(action.module).validate(params)

        execution = await call_with_policy(
            lambda: self.executor.execute(host, action.module, params),
            timeout=self.timeout,
            policy=self.retry,
            timeout_error=ExecutorTimeoutError,
            description=f"'{action.name}' on {host.alias}",
        )
        if execution.failed:
            return result(Outcome.FAILED, execution.payload, execution.error)
        return result(Outcome.CHANGED if execution.changed else Outcome.UNCHANGED, execution.payload)

    async def close(self) -> None:
        await self.executor.close()
