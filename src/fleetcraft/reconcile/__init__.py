"""Reconciliation engine: plan and apply a desired resource graph.

Usage:
    from fleetcraft.reconcile import ReconciliationEngine

    engine = ReconciliationEngine(registry, store)
    plan = await engine.plan(engine.load("infra.yaml"))
    result = await engine.apply(plan)
"""
from .diff import Planner
from .engine import ReconciliationEngine
from .executor import PlanExecutor
from .parser import DesiredStateParser
from .schema import (
    ApplyOptions,
    ApplyResult,
    Change,
    ChangeAction,
    ChangeOutcome,
    ChangeStatus,
    DesiredState,
    Plan,
    Resource,
    Variable,
)
from .validator import DesiredStateValidator

__all__ = [
    "ReconciliationEngine",
    "Planner",
    "PlanExecutor",
    "DesiredStateParser",
    "DesiredStateValidator",
    "ApplyOptions",
    "ApplyResult",
    "Change",
    "ChangeAction",
    "ChangeOutcome",
    "ChangeStatus",
    "DesiredState",
    "Plan",
    "Resource",
    "Variable",
]
