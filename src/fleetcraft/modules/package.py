"""System packages through the host's package manager."""
import logging
import shlex
from typing import Literal, Optional, Union

from pydantic import field_validator

from .base import CommandSession, ExecutionResult, ModuleKind, ModuleParams

logger = logging.getLogger(__name__)


class PackageParams(ModuleParams):
    name: Union[str, list[str]]
    state: Literal["present", "absent"] = "present"
    manager: Optional[Literal["apt", "dnf", "yum"]] = None

    @field_validator("name")
    @classmethod
    def _at_least_one(cls, value):
        packages = [value] if isinstance(value, str) else list(value)
        if not packages or not all(packages):
            raise ValueError("at least one package name is required")
        return packages


class PackageManager:
    """Query, install and remove packages on a host."""

    name = "generic"

    async def is_installed(self, session: CommandSession, package: str) -> bool:
        raise NotImplementedError

    def install_command(self, packages: list[str]) -> str:
        raise NotImplementedError

    def remove_command(self, packages: list[str]) -> str:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"

    async def is_installed(self, session: CommandSession, package: str) -> bool:
        result = await session.run(f"dpkg-query -W -f '${{Status}}' {shlex.quote(package)}")
        return result.ok and "install ok installed" in result.stdout

    def install_command(self, packages: list[str]) -> str:
        return "DEBIAN_FRONTEND=noninteractive apt-get install -y " + shlex.join(packages)

    def remove_command(self, packages: list[str]) -> str:
        return "DEBIAN_FRONTEND=noninteractive apt-get remove -y " + shlex.join(packages)


class DnfPackageManager(PackageManager):
    name = "dnf"

    async def is_installed(self, session: CommandSession, package: str) -> bool:
        result = await session.run(f"rpm -q {shlex.quote(package)}")
        return result.ok

    def install_command(self, packages: list[str]) -> str:
        return f"{self.name} install -y " + shlex.join(packages)

    def remove_command(self, packages: list[str]) -> str:
        return f"{self.name} remove -y " + shlex.join(packages)


class YumPackageManager(DnfPackageManager):
    name = "yum"


# Probed in order when no manager is requested
PACKAGE_MANAGERS: dict[str, type[PackageManager]] = {
    "apt": AptPackageManager,
    "dnf": DnfPackageManager,
    "yum": YumPackageManager,
}

_BINARIES = {"apt": "apt-get", "dnf": "dnf", "yum": "yum"}


async def detect_manager(session: CommandSession,
                         preferred: Optional[str] = None) -> Optional[PackageManager]:
    """The requested manager, or the first one found on the host's PATH."""
    if preferred:
        return PACKAGE_MANAGERS[preferred]()
    for key, manager_class in PACKAGE_MANAGERS.items():
        result = await session.run(f"command -v {_BINARIES[key]}")
        if result.ok:
            return manager_class()
    return None


class PackageModule(ModuleKind):
    """Ensure packages are installed or removed."""

    name = "package"
    Params = PackageParams

    async def apply(self, session: CommandSession, params: PackageParams) -> ExecutionResult:
        manager = await detect_manager(session, params.manager)
        if manager is None:
            return self.failure("no supported package manager (apt, dnf, yum) found")

        packages: list[str] = list(params.name)
        logger.debug(f"package-manager={manager.name} packages={packages} state={params.state}")

        if params.state == "present":
            pending = [p for p in packages if not await manager.is_installed(session, p)]
            command = manager.install_command(pending) if pending else ""
            verb, action = "installed", "install"
        else:
            pending = [p for p in packages if await manager.is_installed(session, p)]
            command = manager.remove_command(pending) if pending else ""
            verb, action = "removed", "remove"

        payload = {"manager": manager.name, verb: pending}
        if not pending:
            return ExecutionResult(changed=False, payload=payload)

        result = await session.run(command)
        if not result.ok:
            names = ", ".join(pending)
            return self.failure(f"{manager.name} could not {action} {names}", result)
        return ExecutionResult(changed=True, payload=payload)
