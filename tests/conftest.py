"""Shared fixtures and fakes for the fleetcraft test suite."""
import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

import pytest
import yaml

from fleetcraft.executors import RemoteExecutor
from fleetcraft.inventory import Host
from fleetcraft.modules import CommandOutput, CommandSession, ExecutionResult, get_module
from fleetcraft.providers import InMemoryProvider, ProviderRegistry


@pytest.fixture
def write_yaml(tmp_path):
    """Write a document to a YAML file under tmp_path and return its path."""
    def _write(name: str, document: Any):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def provider():
    return InMemoryProvider(computed={
        "net_vpc": {"arn": "arn:vpc/{id}"},
        "compute_instance": {"address": "10.0.1.{n}"},
    })


@pytest.fixture
def registry(provider):
    return ProviderRegistry({"*": provider})


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Keep log and audit files of CLI runs inside tmp_path."""
    monkeypatch.setenv("FLEETCRAFT_LOG_FILE", str(tmp_path / "logs" / "fleetcraft.log"))
    monkeypatch.setenv("FLEETCRAFT_AUDIT_DIR", str(tmp_path / "audit"))
    yield
    for name in ("fleetcraft", "fleetcraft.perf", "fleetcraft.audit"):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            handler.close()
            target.removeHandler(handler)
    logging.getLogger("fleetcraft.perf").propagate = True


class FakeSession(CommandSession):
    """Scripted host: commands are answered by handlers, files live in a dict.

    ``handlers`` maps a command prefix to a callable returning a
    CommandOutput (or an int return code).
    """

    def __init__(self, handlers: Optional[Mapping[str, Callable[[str], Any]]] = None,
                 files: Optional[dict[str, str]] = None):
        self.handlers = dict(handlers or {})
        self.files = dict(files or {})
        self.modes: dict[str, int] = {}
        self.commands: list[str] = []

    async def run(self, command: str) -> CommandOutput:
        self.commands.append(command)
        for prefix in sorted(self.handlers, key=len, reverse=True):
            if command.startswith(prefix):
                result = self.handlers[prefix](command)
                if isinstance(result, int):
                    return CommandOutput(result)
                return result
        return CommandOutput(0)

    async def read_file(self, path: str) -> Optional[str]:
        return self.files.get(path)

    async def write_file(self, path: str, content: str, mode: Optional[int] = None) -> None:
        self.files[path] = content
        if mode is not None:
            self.modes[path] = mode


class FakePackageHost:
    """An apt host whose installed packages change when apt-get runs."""

    def __init__(self, installed=()):
        self.installed = set(installed)
        self.session = FakeSession({
            "command -v apt-get": lambda cmd: 0,
            "dpkg-query": self._query,
            "DEBIAN_FRONTEND=noninteractive apt-get install": self._install,
            "DEBIAN_FRONTEND=noninteractive apt-get remove": self._remove,
        })

    def _query(self, command: str) -> CommandOutput:
        package = command.split()[-1]
        if package in self.installed:
            return CommandOutput(0, "install ok installed")
        return CommandOutput(1, "", f"dpkg-query: no packages found matching {package}")

    def _install(self, command: str) -> int:
        self.installed.update(command.split()[4:])
        return 0

    def _remove(self, command: str) -> int:
        self.installed.difference_update(command.split()[4:])
        return 0


class FakeExecutor(RemoteExecutor):
    """Executor double for the convergence engine.

    By default every call reports Changed. ``outcomes`` maps
    ``(alias, module)`` or ``module`` to an ExecutionResult, an exception
    instance, or a callable ``(host, params) -> ExecutionResult``.
    """

    def __init__(self, outcomes: Optional[dict] = None, facts: Optional[dict] = None,
                 delay: float = 0.0):
        self.outcomes = dict(outcomes or {})
        self.facts = dict(facts or {})
        self.delay = delay
        self.calls: list[tuple[str, str, dict]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def execute(self, host: Host, module: str, params) -> ExecutionResult:
        get_module(module).validate(params)
        self.calls.append((host.alias, module, dict(params or {})))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.get((host.alias, module), self.outcomes.get(module))
            if outcome is None:
                return ExecutionResult(changed=True)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                return outcome(host, params)
            return outcome
        finally:
            self.active -= 1

    async def gather_facts(self, host: Host) -> dict[str, Any]:
        self.calls.append((host.alias, "gather_facts", {}))
        return dict(self.facts)

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, alias: str) -> list[tuple[str, str, dict]]:
        return [c for c in self.calls if c[0] == alias]
