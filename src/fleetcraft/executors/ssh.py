"""SSH executor built on paramiko.

paramiko is blocking, so every call runs in the default thread pool via
``run_in_executor``. One client is kept per host; connection setup is serialized
per host by an asyncio lock.
"""
import asyncio
import logging
import os
import socket
from typing import Any, Optional

import paramiko

from ..errors import ExecutorError, ExecutorTimeoutError, HostUnreachableError
from ..inventory import Host
from ..modules import CommandOutput, CommandSession
from ..utils.retry import RETRYABLE_EXCEPTIONS, with_retry
from .base import SessionExecutor

logger = logging.getLogger(__name__)


class SSHSession(CommandSession):
    """Commands over exec channels, files over SFTP."""

    def __init__(self, alias: str, client: paramiko.SSHClient, timeout: Optional[float] = None):
        self.alias = alias
        self.client = client
        self.timeout = timeout

    async def _blocking(self, func, description: str):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func)
        except socket.timeout:
            raise ExecutorTimeoutError(f"{description} on {self.alias} timed out after {self.timeout}s")
        except (paramiko.SSHException, EOFError, ConnectionError) as e:
            raise HostUnreachableError(self.alias, f"{description}: {e}")
        except OSError as e:
            raise ExecutorError(f"{description} on {self.alias} failed: {e}")

    async def run(self, command: str) -> CommandOutput:
        client = self.client
        timeout = self.timeout

        def _exec():
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode("utf-8", errors="ignore")
            err = stderr.read().decode("utf-8", errors="ignore")
            exit_code = stdout.channel.recv_exit_status()
            return CommandOutput(exit_code, out, err)

        result = await self._blocking(_exec, "command")
        if not result.ok:
            logger.debug(f"[{self.alias}] '{command}' exited {result.returncode}: {result.stderr.strip()}")
        return result

    async def read_file(self, path: str) -> Optional[str]:
        client = self.client

        def _read():
            with client.open_sftp() as sftp:
                try:
                    with sftp.open(path, "r") as f:
                        return f.read().decode("utf-8", errors="replace")
                except FileNotFoundError:
                    return None

        return await self._blocking(_read, f"read {path}")

    async def write_file(self, path: str, content: str, mode: Optional[int] = None) -> None:
        client = self.client

        def _write():
            with client.open_sftp() as sftp:
                with sftp.open(path, "w") as f:
                    f.write(content.encode("utf-8"))
                if mode is not None:
                    sftp.chmod(path, mode)

        await self._blocking(_write, f"write {path}")


class SSHExecutor(SessionExecutor):
    """
    Run modules on hosts over SSH.

    Connection parameters come from the inventory: ``user`` (or
    ``username``), ``port``, ``password`` or ``password_env``, ``key_file``
    and ``timeout``.
    """

    def __init__(self, timeout: float = 30, retries: int = 3, retry_delay: float = 1):
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._clients: dict[str, paramiko.SSHClient] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _connect_kwargs(self, host: Host) -> dict[str, Any]:
        params = host.connection_params
        password = params.get("password")
        if not password and params.get("password_env"):
            password = os.environ.get(str(params["password_env"]), "")
        kwargs: dict[str, Any] = {
            "hostname": host.address,
            "port": int(params.get("port", 22)),
            "username": params.get("user") or params.get("username"),
            "timeout": float(params.get("timeout", self.timeout)),
        }
        if password:
            kwargs["password"] = password
        if params.get("key_file"):
            kwargs["key_filename"] = os.path.expanduser(str(params["key_file"]))
        return kwargs

    async def _connect(self, host: Host) -> paramiko.SSHClient:
        kwargs = self._connect_kwargs(host)

        @with_retry(max_attempts=self.retries, min_wait=self.retry_delay, max_wait=10,
                    exceptions=RETRYABLE_EXCEPTIONS)
        async def connect() -> paramiko.SSHClient:
            logger.info(f"Connecting to {host.alias} at {host.address}:{kwargs['port']}")
            loop = asyncio.get_event_loop()

            def _connect():
                ssh = paramiko.SSHClient()
                ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
                ssh.connect(**kwargs)
                return ssh

            return await loop.run_in_executor(None, _connect)

        try:
            return await connect()
        except paramiko.AuthenticationException as e:
            raise HostUnreachableError(host.alias, f"authentication failed: {e}")
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise HostUnreachableError(host.alias, str(e) or type(e).__name__)

    async def session(self, host: Host) -> SSHSession:
        lock = self._locks.setdefault(host.alias, asyncio.Lock())
        async with lock:
            client = self._clients.get(host.alias)
            transport = client.get_transport() if client is not None else None
            if transport is None or not transport.is_active():
                client = await self._connect(host)
                self._clients[host.alias] = client
                logger.info(f"Connected to {host.alias}")
        return SSHSession(host.alias, client, self.timeout)

    async def close(self) -> None:
        for alias, client in self._clients.items():
            client.close()
            logger.debug(f"Disconnected from {alias}")
        self._clients.clear()
