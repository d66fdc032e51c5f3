"""In-memory resource provider for tests and dry local runs."""
import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from ..errors import ProviderError
from ..values import ResourceRef
from .base import ResolvedAttributes, ResourceProvider, ResourceTypeSchema

logger = logging.getLogger(__name__)


@dataclass
class _Injection:
    operation: str
    resource_type: Optional[str]
    error: Optional[Exception]
    times: Optional[int]
    when: Optional[Callable[[dict], bool]]
    delay: float = 0.0

    def matches(self, operation: str, resource_type: str, attributes: dict) -> bool:
        if self.times is not None and self.times <= 0:
            return False
        if self.operation != operation:
            return False
        if self.resource_type not in (None, resource_type):
            return False
        return self.when is None or bool(self.when(attributes))


class InMemoryProvider(ResourceProvider):
    """Keeps resources in a dict.

    Ids are deterministic: ``<type>-<n>`` with a per-type counter.
    ``computed`` maps a type to extra attributes filled in on create; string
    values are formatted with ``id`` and ``n``.
    """

    name = "memory"

    def __init__(
        self,
        schemas: Optional[Mapping[str, Any]] = None,
        computed: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._schemas: dict[str, ResourceTypeSchema] = {}
        for resource_type, schema in (schemas or {}).items():
            if not isinstance(schema, ResourceTypeSchema):
                schema = ResourceTypeSchema.from_dict(schema)
            self._schemas[resource_type] = schema
        self.computed = {k: dict(v) for k, v in (computed or {}).items()}
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, Optional[str]]] = []
        self._counters: dict[str, int] = {}
        self._injections: list[_Injection] = []

    def schema(self, resource_type: str) -> ResourceTypeSchema:
        return self._schemas.get(resource_type, ResourceTypeSchema())

    def inject_failure(
        self,
        operation: str,
        resource_type: Optional[str] = None,
        *,
        error: Optional[Exception] = None,
        times: Optional[int] = None,
        when: Optional[Callable[[dict], bool]] = None,
        delay: float = 0.0,
    ) -> None:
        """Make matching calls fail (or stall for ``delay`` seconds first)."""
        self._injections.append(_Injection(
            operation=operation,
            resource_type=resource_type,
            error=error or ProviderError(f"Injected {operation} failure"),
            times=times,
            when=when,
            delay=delay,
        ))

    def inject_delay(self, operation: str, delay: float,
                     resource_type: Optional[str] = None, times: Optional[int] = None) -> None:
        """Make matching calls sleep before succeeding."""
        self._injections.append(_Injection(
            operation=operation,
            resource_type=resource_type,
            error=None,
            times=times,
            when=None,
            delay=delay,
        ))

    async def _maybe_fail(self, operation: str, resource_type: str, attributes: dict) -> None:
        for injection in self._injections:
            if not injection.matches(operation, resource_type, attributes):
                continue
            if injection.times is not None:
                injection.times -= 1
            if injection.delay:
                await asyncio.sleep(injection.delay)
            if injection.error is not None:
                raise injection.error
            return

    def _next_id(self, resource_type: str) -> tuple[str, int]:
        n = self._counters.get(resource_type, 0) + 1
        self._counters[resource_type] = n
        return f"{resource_type}-{n}", n

    async def describe(self, ref: ResourceRef, resource_id: str) -> Optional[ResolvedAttributes]:
        self.calls.append(("describe", ref.type, resource_id))
        await self._maybe_fail("describe", ref.type, {"id": resource_id})
        found = self.resources.get(resource_id)
        return copy.deepcopy(found) if found is not None else None

    async def create(self, resource_type: str, attributes: dict[str, Any]) -> ResolvedAttributes:
        self.calls.append(("create", resource_type, None))
        await self._maybe_fail("create", resource_type, attributes)
        resource_id, n = self._next_id(resource_type)
        created = copy.deepcopy(attributes)
        for key, value in self.computed.get(resource_type, {}).items():
            if key not in created:
                created[key] = value.format(id=resource_id, n=n) if isinstance(value, str) else value
        created["id"] = resource_id
        self.resources[resource_id] = created
        logger.debug(f"Created {resource_type} {resource_id}")
        return copy.deepcopy(created)

    async def update(self, resource_type: str, resource_id: str,
                     attributes: dict[str, Any]) -> ResolvedAttributes:
        self.calls.append(("update", resource_type, resource_id))
        await self._maybe_fail("update", resource_type, attributes)
        if resource_id not in self.resources:
            raise ProviderError(f"{resource_type} {resource_id} does not exist")
        current = self.resources[resource_id]
        current.update(copy.deepcopy(attributes))
        current["id"] = resource_id
        return copy.deepcopy(current)

    async def delete(self, resource_type: str, resource_id: str) -> None:
        self.calls.append(("delete", resource_type, resource_id))
        await self._maybe_fail("delete", resource_type, {"id": resource_id})
        self.resources.pop(resource_id, None)
        logger.debug(f"Deleted {resource_type} {resource_id}")
