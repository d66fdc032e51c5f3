"""Connectivity check module."""
import shlex

from .base import CommandSession, ExecutionResult, ModuleKind, ModuleParams


class PingParams(ModuleParams):
    data: str = "pong"


class PingModule(ModuleKind):
    """Round-trip a string through the host shell. Never changes anything."""

    name = "ping"
    Params = PingParams

    async def apply(self, session: CommandSession, params: PingParams) -> ExecutionResult:
        result = await session.run(f"echo {shlex.quote(params.data)}")
        if not result.ok:
            return self.failure("ping failed", result)
        return ExecutionResult(changed=False, payload={"ping": result.stdout.strip()})
