"""Convergence engine: idempotent actions across a fleet of hosts.

Usage:
    from fleetcraft.converge import ConvergenceEngine

    engine = ConvergenceEngine(executor, forks=5)
    result = await engine.run(engine.load("site.yaml"), inventory)
"""
from .parser import PlaybookParser
from .runner import DEFAULT_FORKS, ConvergenceEngine
from .schema import Action, ActionResult, HostResult, Outcome, Play, Playbook, RunResult
from .validator import PlaybookValidator

__all__ = [
    "ConvergenceEngine",
    "DEFAULT_FORKS",
    "PlaybookParser",
    "PlaybookValidator",
    "Action",
    "ActionResult",
    "HostResult",
    "Outcome",
    "Play",
    "Playbook",
    "RunResult",
]
