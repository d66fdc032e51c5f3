"""Route each host to the executor for its connection type."""
import logging
from typing import Any, Mapping, Optional

from ..errors import ExecutorError
from ..inventory import Host
from ..modules import ExecutionResult
from .base import RemoteExecutor

logger = logging.getLogger(__name__)


class DispatchingExecutor(RemoteExecutor):
    """
    Pick an executor per host from ``connection_params["connection"]``.

    Usage:
        executor = DispatchingExecutor({"ssh": SSHExecutor(), "local": LocalExecutor()})
    """

    def __init__(self, executors: Mapping[str, RemoteExecutor]):
        self.executors = dict(executors)

    def for_host(self, host: Host) -> RemoteExecutor:
        connection = host.connection
        if connection not in self.executors:
            raise ExecutorError(
                f"Host {host.alias} uses unknown connection '{connection}' "
                f"(available: {', '.join(sorted(self.executors))})"
            )
        return self.executors[connection]

    async def execute(self, host: Host, module: str,
                      params: Optional[Mapping[str, Any]]) -> ExecutionResult:
        return await self.for_host(host).execute(host, module, params)

    async def gather_facts(self, host: Host) -> dict[str, Any]:
        return await self.for_host(host).gather_facts(host)

    async def close(self) -> None:
        for executor in self.executors.values():
            await executor.close()
