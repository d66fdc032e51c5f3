"""Module kinds: idempotent units of host configuration."""
from ..errors import ValidationError
from .base import CommandOutput, CommandSession, ExecutionResult, ModuleKind, ModuleParams
from .command import CommandModule
from .file import FileModule
from .package import PackageModule
from .ping import PingModule
from .service import ServiceModule

__all__ = [
    "CommandOutput",
    "CommandSession",
    "ExecutionResult",
    "ModuleKind",
    "ModuleParams",
    "CommandModule",
    "FileModule",
    "PackageModule",
    "PingModule",
    "ServiceModule",
    "MODULE_REGISTRY",
    "get_module",
]

# Module kind registry
MODULE_REGISTRY: dict[str, ModuleKind] = {
    module.name: module
    for module in (PingModule(), CommandModule(), PackageModule(), FileModule(), ServiceModule())
}


def get_module(name: str) -> ModuleKind:
    """Look up a module kind by name."""
    if name not in MODULE_REGISTRY:
        raise ValidationError(f"Unknown module: {name}")
    return MODULE_REGISTRY[name]
