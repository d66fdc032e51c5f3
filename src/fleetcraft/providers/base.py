"""Resource provider abstraction and type routing."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..errors import UnknownResourceTypeError
from ..values import ResourceRef

logger = logging.getLogger(__name__)

# Attributes returned by a provider; always include "id"
ResolvedAttributes = dict[str, Any]


@dataclass(frozen=True)
class ResourceTypeSchema:
    """What a provider declares about one resource type."""
    immutable_fields: frozenset = frozenset()
    destroy_before_create: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceTypeSchema":
        return cls(
            immutable_fields=frozenset(data.get("immutable_fields", ()) or ()),
            destroy_before_create=bool(data.get("destroy_before_create", False)),
        )


class ResourceProvider(ABC):
    """Abstract base class for resource providers.

    Providers are external collaborators: they perform the actual create,
    update and delete calls against whatever API backs a resource type.
    """

    name = "provider"

    @abstractmethod
    async def describe(self, ref: ResourceRef, resource_id: str) -> Optional[ResolvedAttributes]:
        """Read the live attributes of a resource, None when it does not exist."""
        pass

    @abstractmethod
    async def create(self, resource_type: str, attributes: dict[str, Any]) -> ResolvedAttributes:
        """Create a resource and return its attributes including ``id``."""
        pass

    @abstractmethod
    async def update(self, resource_type: str, resource_id: str,
                     attributes: dict[str, Any]) -> ResolvedAttributes:
        """Update a resource in place and return its attributes."""
        pass

    @abstractmethod
    async def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""
        pass

    def schema(self, resource_type: str) -> ResourceTypeSchema:
        """Schema for a resource type. Default: everything mutable."""
        return ResourceTypeSchema()

    async def close(self) -> None:
        """Release any client resources."""
        pass


class ProviderRegistry:
    """Route resource types to providers.

    Lookup order: exact type, then the type prefix before the first ``_``
    (``net`` for ``net_vpc``), then the ``*`` default.
    """

    def __init__(self, providers: Optional[Mapping[str, ResourceProvider]] = None):
        self._providers: dict[str, ResourceProvider] = dict(providers or {})

    def register(self, key: str, provider: ResourceProvider) -> None:
        self._providers[key] = provider
        logger.debug(f"Registered provider {provider.name} for '{key}'")

    def find(self, resource_type: str) -> Optional[ResourceProvider]:
        if resource_type in self._providers:
            return self._providers[resource_type]
        prefix = resource_type.split("_", 1)[0]
        if prefix in self._providers:
            return self._providers[prefix]
        return self._providers.get("*")

    def resolve(self, resource_type: str) -> ResourceProvider:
        provider = self.find(resource_type)
        if provider is None:
            raise UnknownResourceTypeError(resource_type)
        return provider

    def has(self, resource_type: str) -> bool:
        return self.find(resource_type) is not None

    def schema(self, resource_type: str) -> ResourceTypeSchema:
        return self.resolve(resource_type).schema(resource_type)

    async def close(self) -> None:
        seen = set()
        for provider in self._providers.values():
            if id(provider) in seen:
                continue
            seen.add(id(provider))
            await provider.close()
