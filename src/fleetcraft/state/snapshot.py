"""State snapshot value types and their document form."""
import copy
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Optional

from ..values import ResourceRef

STATE_VERSION = 1

# Keys the snapshot understands; anything else round-trips through ``extra``
_TOP_LEVEL_KEYS = {"version", "serial", "lineage", "resources", "deposed"}
_RESOURCE_KEYS = {"type", "name", "id", "attributes", "dependencies"}


@dataclass(frozen=True)
class ResourceState:
    """Recorded state of one resource."""
    ref: ResourceRef
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[ResourceRef, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.ref.type,
            "name": self.ref.name,
            "id": self.id,
            "attributes": copy.deepcopy(self.attributes),
            "dependencies": [str(dep) for dep in self.dependencies],
        }
        for key, value in self.extra.items():
            data.setdefault(key, copy.deepcopy(value))
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceState":
        ref = ResourceRef(str(data["type"]), str(data["name"]))
        attributes = dict(data.get("attributes") or {})
        resource_id = data.get("id", attributes.get("id"))
        if resource_id is None:
            raise KeyError(f"resource {ref} has no id")
        return cls(
            ref=ref,
            id=str(resource_id),
            attributes=attributes,
            dependencies=tuple(ResourceRef.parse(d) for d in data.get("dependencies") or ()),
            extra={k: v for k, v in data.items() if k not in _RESOURCE_KEYS},
        )


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable record of every managed resource.

    ``put`` and ``remove`` return new snapshots; the receiver is unchanged.
    Resources keep the order in which they were first recorded.

    ``deposed`` holds instances that a create-before-destroy replacement
    pushed out of ``resources`` and that have not been deleted yet.
    """
    version: int = STATE_VERSION
    serial: int = 0
    lineage: str = ""
    resources: Mapping[ResourceRef, ResourceState] = field(default_factory=dict)
    deposed: tuple[ResourceState, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def get(self, ref: ResourceRef) -> Optional[ResourceState]:
        return self.resources.get(ref)

    def __contains__(self, ref: object) -> bool:
        return ref in self.resources

    def __iter__(self) -> Iterator[ResourceState]:
        return iter(self.resources.values())

    def __len__(self) -> int:
        return len(self.resources)

    def refs(self) -> list[ResourceRef]:
        return list(self.resources)

    def put(self, state: ResourceState) -> "StateSnapshot":
        resources = dict(self.resources)
        resources[state.ref] = state
        return replace(self, resources=resources)

    def remove(self, ref: ResourceRef) -> "StateSnapshot":
        if ref not in self.resources:
            return self
        resources = {k: v for k, v in self.resources.items() if k != ref}
        return replace(self, resources=resources)

    def depose(self, state: ResourceState) -> "StateSnapshot":
        """Keep a replaced instance on record until its delete succeeds."""
        return replace(self, deposed=self.deposed + (state,))

    def forget_deposed(self, ref: ResourceRef, resource_id: str) -> "StateSnapshot":
        kept = tuple(s for s in self.deposed if not (s.ref == ref and s.id == resource_id))
        return replace(self, deposed=kept)

    def attribute_scope(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Nested ``{type: {name: attributes}}`` view for expression lookup."""
        scope: dict[str, dict[str, dict[str, Any]]] = {}
        for state in self.resources.values():
            attrs = dict(state.attributes)
            attrs.setdefault("id", state.id)
            scope.setdefault(state.ref.type, {})[state.ref.name] = attrs
        return scope

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": STATE_VERSION,
            "serial": self.serial,
            "lineage": self.lineage,
            "resources": [state.to_dict() for state in self.resources.values()],
        }
        if self.deposed:
            data["deposed"] = [state.to_dict() for state in self.deposed]
        for key, value in self.extra.items():
            data.setdefault(key, copy.deepcopy(value))
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateSnapshot":
        """Build a snapshot from a current-version document."""
        resources: dict[ResourceRef, ResourceState] = {}
        for entry in data.get("resources") or []:
            state = ResourceState.from_dict(entry)
            resources[state.ref] = state
        return cls(
            version=STATE_VERSION,
            serial=int(data.get("serial", 0)),
            lineage=str(data.get("lineage", "")),
            resources=resources,
            deposed=tuple(ResourceState.from_dict(entry) for entry in data.get("deposed") or []),
            extra={k: v for k, v in data.items() if k not in _TOP_LEVEL_KEYS},
        )


def migrate_document(data: Mapping[str, Any]) -> dict[str, Any]:
    """Bring an older state document up to the current version.

    Version 0 is a flat ``{"type.name": attributes}`` mapping, optionally
    wrapped as ``{"version": 0, "resources": {...}}``.
    """
    version = data.get("version", 0)
    if version == STATE_VERSION:
        return dict(data)
    if version != 0:
        raise ValueError(f"unsupported state version {version!r}")

    flat = data.get("resources", {}) if "version" in data else data
    if not isinstance(flat, Mapping):
        raise ValueError("legacy state must map 'type.name' to attributes")

    resources = []
    for key, attributes in flat.items():
        ref = ResourceRef.parse(key)
        if not isinstance(attributes, Mapping) or "id" not in attributes:
            raise ValueError(f"legacy resource {key} has no id")
        resources.append({
            "type": ref.type,
            "name": ref.name,
            "id": str(attributes["id"]),
            "attributes": dict(attributes),
            "dependencies": [],
        })
    migrated: dict[str, Any] = {"version": STATE_VERSION, "serial": int(data.get("serial", 0) or 0),
                                "lineage": str(data.get("lineage", "") or ""), "resources": resources}
    if "version" in data:
        for key, value in data.items():
            migrated.setdefault(key, value)
    return migrated
