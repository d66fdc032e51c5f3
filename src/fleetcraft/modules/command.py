"""Arbitrary shell commands with filesystem guards."""
import logging
import shlex
from typing import Optional

from pydantic import Field

from .base import CommandSession, ExecutionResult, ModuleKind, ModuleParams

logger = logging.getLogger(__name__)


class CommandParams(ModuleParams):
    cmd: str = Field(..., min_length=1)
    creates: Optional[str] = None
    removes: Optional[str] = None
    chdir: Optional[str] = None
    returns: list[int] = Field(default_factory=lambda: [0])


class CommandModule(ModuleKind):
    """
    Run a command.

    A command always reports changed when it runs. ``creates`` skips it when
    the path already exists, ``removes`` skips it when the path is missing.
    """

    name = "command"
    Params = CommandParams

    async def apply(self, session: CommandSession, params: CommandParams) -> ExecutionResult:
        if params.creates and await session.exists(params.creates):
            logger.debug(f"Skipping '{params.cmd}': {params.creates} exists")
            return ExecutionResult(changed=False, payload={"skipped_reason": f"{params.creates} exists"})
        if params.removes and not await session.exists(params.removes):
            logger.debug(f"Skipping '{params.cmd}': {params.removes} is missing")
            return ExecutionResult(changed=False, payload={"skipped_reason": f"{params.removes} missing"})

        command = params.cmd
        if params.chdir:
            command = f"cd {shlex.quote(params.chdir)} && {command}"

        result = await session.run(command)
        payload = {"rc": result.returncode, "stdout": result.stdout, "stderr": result.stderr}
        if result.returncode not in params.returns:
            return self.failure(f"command exited with {result.returncode}", result)
        return ExecutionResult(changed=True, payload=payload)
