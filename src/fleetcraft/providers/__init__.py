"""Resource providers for the reconciliation engine."""
from typing import Any, Mapping, Optional

from .base import ProviderRegistry, ResolvedAttributes, ResourceProvider, ResourceTypeSchema
from .http import HttpProvider
from .memory import InMemoryProvider

__all__ = [
    "ProviderRegistry",
    "ResolvedAttributes",
    "ResourceProvider",
    "ResourceTypeSchema",
    "HttpProvider",
    "InMemoryProvider",
    "PROVIDER_TYPES",
    "create_provider",
    "build_registry",
]

# Provider kind registry
PROVIDER_TYPES = {
    "memory": InMemoryProvider,
    "http": HttpProvider,
}


def create_provider(kind: str, options: Optional[Mapping[str, Any]] = None) -> ResourceProvider:
    """Factory function to create provider instances."""
    kind = (kind or "").lower()
    if kind not in PROVIDER_TYPES:
        raise ValueError(f"Unknown provider kind: {kind}")
    return PROVIDER_TYPES[kind](**dict(options or {}))


def build_registry(config: Mapping[str, Mapping[str, Any]]) -> ProviderRegistry:
    """Build a registry from ``{type-or-prefix: {kind: ..., **options}}``."""
    registry = ProviderRegistry()
    for key, entry in config.items():
        options = dict(entry)
        kind = options.pop("kind", "memory")
        registry.register(key, create_provider(kind, options))
    return registry
