"""Executor for the machine fleetcraft runs on."""
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from ..errors import ExecutorError
from ..inventory import Host
from ..modules import CommandOutput, CommandSession
from .base import SessionExecutor

logger = logging.getLogger(__name__)


class LocalSession(CommandSession):
    """Shell commands through asyncio subprocesses, files through the local filesystem."""

    def __init__(self, env: Optional[dict[str, str]] = None):
        self.env = env

    async def run(self, command: str) -> CommandOutput:
        env = {**os.environ, **self.env} if self.env else None
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        result = CommandOutput(
            proc.returncode if proc.returncode is not None else -1,
            stdout.decode("utf-8", errors="ignore"),
            stderr.decode("utf-8", errors="ignore"),
        )
        if not result.ok:
            logger.debug(f"'{command}' exited {result.returncode}: {result.stderr.strip()}")
        return result

    async def read_file(self, path: str) -> Optional[str]:
        def _read():
            try:
                return Path(path).read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, _read)
        except OSError as e:
            raise ExecutorError(f"Cannot read {path}: {e}")

    async def write_file(self, path: str, content: str, mode: Optional[int] = None) -> None:
        def _write():
            Path(path).write_text(content, encoding="utf-8")
            if mode is not None:
                os.chmod(path, mode)

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, _write)
        except OSError as e:
            raise ExecutorError(f"Cannot write {path}: {e}")


class LocalExecutor(SessionExecutor):
    """Run modules against the local machine, whatever the host address says."""

    def __init__(self, env: Optional[dict[str, str]] = None):
        self.env = env

    async def session(self, host: Host) -> LocalSession:
        return LocalSession(self.env)
