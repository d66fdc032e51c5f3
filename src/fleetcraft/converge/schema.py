"""Data structures for the convergence engine."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Outcome(str, Enum):
    """What running one action on one host amounted to."""
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Action:
    """An idempotent unit of configuration intent.

    ``condition`` is a bare expression; ``loop`` is a list or an expression
    yielding one, each element bound to ``item``.
    """
    name: str
    module: str
    parameters: dict[str, Any] = field(default_factory=dict)
    condition: Optional[str] = None
    notifies: tuple[str, ...] = ()
    register: Optional[str] = None
    loop: Any = None
    handler: bool = False


@dataclass
class Play:
    """Actions and handlers targeting a host pattern."""
    name: str
    hosts: str = "all"
    actions: list[Action] = field(default_factory=list)
    handlers: list[Action] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    gather_facts: bool = False

    def handler(self, name: str) -> Optional[Action]:
        for handler in self.handlers:
            if handler.name == name:
                return handler
        return None


@dataclass
class Playbook:
    """Plays run in order on every host they target."""
    plays: list[Play] = field(default_factory=list)


@dataclass
class ActionResult:
    """Result of one action (or handler) on one host."""
    host: str
    action: str
    module: str
    outcome: Outcome
    payload: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    handler: bool = False
    unreachable: bool = False
    duration_ms: float = 0

    def registered(self) -> dict[str, Any]:
        """Value bound by ``register``."""
        return {
            **self.payload,
            "changed": self.outcome == Outcome.CHANGED,
            "failed": self.outcome == Outcome.FAILED,
            "skipped": self.outcome == Outcome.SKIPPED,
            "outcome": self.outcome.value,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "action": self.action,
            "module": self.module,
            "outcome": self.outcome.value,
            "payload": self.payload,
            "error": self.error,
            "handler": self.handler,
            "duration_ms": self.duration_ms,
        }


@dataclass
class HostResult:
    """Everything that happened on one host during a run."""
    alias: str
    results: list[ActionResult] = field(default_factory=list)
    failed: bool = False
    unreachable: bool = False
    cancelled: bool = False
    notified: list[str] = field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def recap(self) -> dict[str, int]:
        changed = self.count(Outcome.CHANGED)
        return {
            "ok": changed + self.count(Outcome.UNCHANGED),
            "changed": changed,
            "unreachable": 1 if self.unreachable else 0,
            "failed": self.count(Outcome.FAILED),
            "skipped": self.count(Outcome.SKIPPED),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "alias": self.alias,
            "failed": self.failed,
            "unreachable": self.unreachable,
            "cancelled": self.cancelled,
            "notified": list(self.notified),
            "recap": self.recap(),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class RunResult:
    """Per-host results of a convergence run."""
    hosts: dict[str, HostResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True when no host failed or was unreachable."""
        return not any(h.failed or h.unreachable for h in self.hosts.values())

    def failed_hosts(self) -> list[str]:
        return [alias for alias, h in self.hosts.items() if h.failed or h.unreachable]

    def recap(self) -> dict[str, dict[str, int]]:
        return {alias: h.recap() for alias, h in self.hosts.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "hosts": {alias: h.to_dict() for alias, h in self.hosts.items()},
        }
