"""systemd services."""
import logging
import shlex
from typing import Literal, Optional

from pydantic import model_validator

from .base import CommandSession, ExecutionResult, ModuleKind, ModuleParams

logger = logging.getLogger(__name__)


class ServiceParams(ModuleParams):
    name: str
    state: Optional[Literal["started", "stopped", "restarted"]] = None
    enabled: Optional[bool] = None

    @model_validator(mode="after")
    def _something_to_do(self):
        if self.state is None and self.enabled is None:
            raise ValueError("one of state or enabled is required")
        return self


class ServiceModule(ModuleKind):
    """Start, stop, restart, enable or disable a service via systemctl."""

    name = "service"
    Params = ServiceParams

    async def apply(self, session: CommandSession, params: ServiceParams) -> ExecutionResult:
        unit = shlex.quote(params.name)
        actions: list[str] = []

        if params.state is not None:
            active = (await session.run(f"systemctl is-active --quiet {unit}")).ok
            if params.state == "restarted":
                actions.append("restart")
            elif params.state == "started" and not active:
                actions.append("start")
            elif params.state == "stopped" and active:
                actions.append("stop")

        if params.enabled is not None:
            enabled = (await session.run(f"systemctl is-enabled --quiet {unit}")).ok
            if params.enabled and not enabled:
                actions.append("enable")
            elif not params.enabled and enabled:
                actions.append("disable")

        for action in actions:
            result = await session.run(f"systemctl {action} {unit}")
            if not result.ok:
                return self.failure(f"systemctl {action} {params.name} failed", result)
            logger.debug(f"systemctl {action} {params.name}")

        payload = {"name": params.name, "actions": actions}
        if params.state is not None:
            payload["state"] = params.state
        if params.enabled is not None:
            payload["enabled"] = params.enabled
        return ExecutionResult(changed=bool(actions), payload=payload)
