"""Base executor abstraction used by the convergence engine."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from ..inventory import Host
from ..modules import CommandSession, ExecutionResult, get_module
from ..utils.logging_config import timed, timed_section

logger = logging.getLogger(__name__)

# os-release ID / ID_LIKE values mapped to a family name
OS_FAMILIES = {
    "debian": "debian",
    "ubuntu": "debian",
    "raspbian": "debian",
    "rhel": "redhat",
    "fedora": "redhat",
    "centos": "redhat",
    "rocky": "redhat",
    "almalinux": "redhat",
    "alpine": "alpine",
    "arch": "archlinux",
    "suse": "suse",
    "opensuse": "suse",
}


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` KEY=value lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("'\"")
    return values


class RemoteExecutor(ABC):
    """Runs module kinds on hosts."""

    @abstractmethod
    async def execute(self, host: Host, module: str,
                      params: Optional[Mapping[str, Any]]) -> ExecutionResult:
        """
        Run one module on a host.

        Module-level failures come back as a result with ``error`` set;
        connection problems raise ExecutorError subclasses.
        """
        pass

    @abstractmethod
    async def gather_facts(self, host: Host) -> dict[str, Any]:
        pass

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        pass


class SessionExecutor(RemoteExecutor):
    """Executor that runs modules through a per-host CommandSession."""

    @abstractmethod
    async def session(self, host: Host) -> CommandSession:
        """Open (or reuse) a session on the host."""
        pass

    async def execute(self, host: Host, module: str,
                      params: Optional[Mapping[str, Any]]) -> ExecutionResult:
        kind = get_module(module)
        validated = kind.validate(params)
        session = await self.session(host)
        async with timed_section("execute", target=host.alias, module=module):
            return await kind.apply(session, validated)

    @timed("gather_facts")
    async def gather_facts(self, host: Host) -> dict[str, Any]:
        session = await self.session(host)
        uname = await session.run("uname -s -r -m")
        hostname = await session.run("hostname")
        os_release = await session.read_file("/etc/os-release")

        facts: dict[str, Any] = {"hostname": hostname.stdout.strip() if hostname.ok else ""}
        parts = uname.stdout.split() if uname.ok else []
        if len(parts) >= 3:
            facts.update(system=parts[0], kernel=parts[1], architecture=parts[2])

        release = parse_os_release(os_release or "")
        if release:
            facts["os_id"] = release.get("ID", "")
            facts["os_version"] = release.get("VERSION_ID", "")
            facts["os_name"] = release.get("PRETTY_NAME", release.get("NAME", ""))
            candidates = [release.get("ID", "")] + release.get("ID_LIKE", "").split()
            facts["os_family"] = next(
                (OS_FAMILIES[c] for c in candidates if c in OS_FAMILIES), facts["os_id"]
            )
        logger.debug(f"Gathered facts for {host.alias}: {facts}")
        return facts
