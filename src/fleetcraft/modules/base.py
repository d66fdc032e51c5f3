"""Base abstractions for module kinds and the sessions they run against."""
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import pydantic
from pydantic import BaseModel, ConfigDict

from ..errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class CommandOutput:
    """Result of one shell command on a host."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class ExecutionResult:
    """What a module reports after running on a host."""
    changed: bool = False
    payload: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class CommandSession(ABC):
    """Command and file primitives on one host, provided by an executor."""

    @abstractmethod
    async def run(self, command: str) -> CommandOutput:
        """Run a shell command and capture its output."""
        pass

    @abstractmethod
    async def read_file(self, path: str) -> Optional[str]:
        """Read a text file; None when it does not exist."""
        pass

    @abstractmethod
    async def write_file(self, path: str, content: str, mode: Optional[int] = None) -> None:
        """Write a text file, replacing any existing content."""
        pass

    async def exists(self, path: str, kind: str = "e") -> bool:
        """``test -<kind> path`` on the host."""
        result = await self.run(f"test -{kind} {shlex.quote(path)}")
        return result.ok


class ModuleParams(BaseModel):
    """Parameter schema of a module kind; unknown parameters are rejected."""
    model_config = ConfigDict(extra="forbid")


class ModuleKind(ABC):
    """
    An idempotent unit of host configuration.

    Implementations inspect the host first, mutate only what differs and
    report ``changed`` only when they mutated something.
    """

    name: str = ""
    Params: type[ModuleParams] = ModuleParams

    def validate(self, params: Optional[Mapping[str, Any]]) -> ModuleParams:
        """
        Check parameters against the module schema.

        Raises:
            ValidationError: with one message per offending field
        """
        try:
            return self.Params.model_validate(dict(params or {}))
        except pydantic.ValidationError as e:
            errors = []
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"]) or "parameters"
                errors.append(f"{self.name}: {location}: {err['msg']}")
            raise ValidationError(f"Invalid parameters for module '{self.name}'", errors)

    @abstractmethod
    async def apply(self, session: CommandSession, params: ModuleParams) -> ExecutionResult:
        """Bring the host in line with ``params``."""
        pass

    @staticmethod
    def failure(message: str, output: Optional[CommandOutput] = None) -> ExecutionResult:
        payload: dict[str, Any] = {}
        if output is not None:
            payload = {"rc": output.returncode, "stdout": output.stdout, "stderr": output.stderr}
            detail = (output.stderr or output.stdout).strip()
            if detail:
                message = f"{message}: {detail}"
        return ExecutionResult(changed=False, payload=payload, error=message)
