"""Remote executors: run module kinds on inventory hosts."""
from .base import RemoteExecutor, SessionExecutor
from .dispatch import DispatchingExecutor
from .local import LocalExecutor, LocalSession
from .ssh import SSHExecutor, SSHSession

__all__ = [
    "RemoteExecutor",
    "SessionExecutor",
    "DispatchingExecutor",
    "LocalExecutor",
    "LocalSession",
    "SSHExecutor",
    "SSHSession",
    "create_executor",
]


def create_executor(timeout: float = 30, retries: int = 3, retry_delay: float = 1) -> DispatchingExecutor:
    """Executor covering every supported connection type."""
    return DispatchingExecutor({
        "ssh": SSHExecutor(timeout=timeout, retries=retries, retry_delay=retry_delay),
        "local": LocalExecutor(),
    })
