"""Schema definitions for the reconciliation engine.

Defines the desired state format, plans and apply results.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import PlanConsumedError
from ..state import StateSnapshot
from ..utils.retry import RetryPolicy
from ..values import AttributeValue, ResourceRef, to_raw


# --- Desired state ---

@dataclass(frozen=True)
class Variable:
    """A declared input variable."""
    name: str
    default: Any = None
    has_default: bool = False
    description: str = ""


@dataclass
class Resource:
    """One declared resource."""
    type: str
    name: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    depends_on: tuple[ResourceRef, ...] = ()
    index: int = 0

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.type, self.name)


@dataclass
class DesiredState:
    """Complete desired resource graph."""
    resources: list[Resource] = field(default_factory=list)
    variables: dict[str, Variable] = field(default_factory=dict)
    outputs: dict[str, AttributeValue] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)  # supplied variable values

    def get(self, ref: ResourceRef) -> Optional[Resource]:
        for resource in self.resources:
            if resource.ref == ref:
                return resource
        return None

    def refs(self) -> list[ResourceRef]:
        return [r.ref for r in self.resources]

    def variable_values(self) -> dict[str, Any]:
        """Supplied values over defaults; variables with neither are left out."""
        resolved = {}
        for name, variable in self.variables.items():
            if name in self.values:
                resolved[name] = self.values[name]
            elif variable.has_default:
                resolved[name] = variable.default
        return resolved


# --- Plan ---

class ChangeAction(str, Enum):
    """Action a change performs."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_OP = "no-op"


@dataclass(frozen=True)
class Change:
    """A single planned change to one resource."""
    action: ChangeAction
    ref: ResourceRef
    before: Optional[dict[str, Any]] = None
    after: dict[str, AttributeValue] = field(default_factory=dict)
    replace: bool = False
    deposed: bool = False
    reason: str = ""
    # Declared attribute values, resolved again right before the provider call
    config: dict[str, AttributeValue] = field(default_factory=dict)
    dependencies: tuple[ResourceRef, ...] = ()

    @property
    def key(self) -> str:
        if self.action == ChangeAction.DELETE and self.deposed:
            if not self.replace:
                # Left over from an earlier apply; several can share one ref
                return f"delete-deposed:{self.ref}#{(self.before or {}).get('id', '')}"
            return f"delete-deposed:{self.ref}"
        return f"{self.action.value}:{self.ref}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "action": self.action.value,
            "ref": str(self.ref),
            "replace": self.replace,
            "deposed": self.deposed,
            "reason": self.reason,
            "before": self.before,
            "after": {k: to_raw(v) for k, v in self.after.items()},
        }


@dataclass
class Plan:
    """Ordered set of changes. Immutable once computed, consumed by one apply."""
    changes: tuple[Change, ...] = ()
    unchanged: tuple[Change, ...] = ()
    edges: dict[str, tuple[str, ...]] = field(default_factory=dict)
    prior: StateSnapshot = field(default_factory=StateSnapshot)
    variables: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, AttributeValue] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    _consumed: bool = field(default=False, repr=False, compare=False)

    @property
    def has_changes(self) -> bool:
        return len(self.changes) > 0

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> None:
        if self._consumed:
            raise PlanConsumedError("Plan has already been applied; compute a new plan")
        self._consumed = True

    def get(self, key: str) -> Optional[Change]:
        for change in self.changes:
            if change.key == key:
                return change
        return None

    def summary(self) -> dict[str, int]:
        """Count changes by action, no-ops included."""
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        counts[ChangeAction.NO_OP.value] = len(self.unchanged)
        counts["replace"] = sum(
            1 for c in self.changes if c.replace and c.action == ChangeAction.CREATE
        )
        return counts

    def summary_line(self) -> str:
        s = self.summary()
        return (
            f"Plan: {s['create']} to create, {s['update']} to update, "
            f"{s['delete']} to delete ({s['replace']} replacements), {s['no-op']} unchanged"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "unchanged": [str(c.ref) for c in self.unchanged],
            "edges": {k: list(v) for k, v in self.edges.items()},
            "summary": self.summary(),
        }


# --- Apply ---

class ChangeStatus(str, Enum):
    """Result status of one change."""
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class ApplyOptions:
    """Options for applying a plan."""
    parallelism: int = 1
    on_failure: str = "halt"  # halt | continue
    timeout: Optional[float] = None
    retry: Optional[RetryPolicy] = None

    def __post_init__(self):
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if self.on_failure not in ("halt", "continue"):
            raise ValueError(f"on_failure must be 'halt' or 'continue', got {self.on_failure!r}")


@dataclass
class ChangeOutcome:
    """What happened to one change."""
    change: Change
    status: ChangeStatus
    attributes: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.change.key,
            "status": self.status.value,
            "attributes": self.attributes,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class ApplyResult:
    """Result of applying a plan."""
    outcomes: list[ChangeOutcome] = field(default_factory=list)
    snapshot: StateSnapshot = field(default_factory=StateSnapshot)
    outputs: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.cancelled and all(
            o.status == ChangeStatus.APPLIED for o in self.outcomes
        )

    def by_status(self, status: ChangeStatus) -> list[ChangeOutcome]:
        return [o for o in self.outcomes if o.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "outputs": self.outputs,
            "serial": self.snapshot.serial,
            "warnings": self.warnings,
        }
