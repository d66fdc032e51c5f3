"""Reconciliation engine facade.

Provides a single entry point for:
1. Loading a desired state document
2. Validating it
3. Refreshing recorded state from providers (optional)
4. Planning the changes
5. Applying the plan with per-change persistence
"""
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from ..errors import ProviderError
from ..providers import ProviderRegistry
from ..state import StateSnapshot, StateStore
from ..utils.logging_config import timed_section
from ..validation import ValidationResult
from .diff import Planner
from .executor import PlanExecutor
from .parser import DesiredStateParser
from .schema import ApplyOptions, ApplyResult, DesiredState, Plan
from .validator import DesiredStateValidator

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Drive a desired resource graph to reality.

    Usage:
        engine = ReconciliationEngine(registry, StateStore("state.json"))
        desired = engine.load("infra.yaml")
        plan = await engine.plan(desired)
        result = await engine.apply(plan)
    """

    def __init__(self, providers: ProviderRegistry, store: Optional[StateStore] = None):
        """
        Initialize the engine.

        Args:
            providers: Registry routing resource types to providers
            store: State file persistence; without it state lives in memory only
        """
        self.providers = providers
        self.store = store
        self.parser = DesiredStateParser()
        self.validator = DesiredStateValidator(providers)
        self.planner = Planner(providers)
        self.executor = PlanExecutor(providers, store)

    def load(self, source: Union[str, Path, Mapping[str, Any]],
             variables: Optional[Mapping[str, Any]] = None) -> DesiredState:
        """Parse a desired state from a YAML path or a mapping."""
        if isinstance(source, Mapping):
            return self.parser.parse(source, variables)
        return self.parser.load_file(source, variables)

    def validate(self, desired: DesiredState) -> ValidationResult:
        """Validate a DesiredState (for external use)."""
        return self.validator.validate(desired)

    def load_state(self) -> StateSnapshot:
        if self.store is None:
            return StateSnapshot()
        return self.store.load()

    async def refresh(self, snapshot: StateSnapshot) -> StateSnapshot:
        """
        Re-read every recorded resource from its provider.

        Resources the provider no longer knows are dropped; the rest get
        their observed attributes.
        """
        async def describe(state):
            provider = self.providers.resolve(state.ref.type)
            async with timed_section("describe", target=str(state.ref)):
                return state, await provider.describe(state.ref, state.id)

        observed = await asyncio.gather(*(describe(state) for state in snapshot))

        refreshed = snapshot
        for state, attributes in observed:
            if attributes is None:
                logger.info(f"{state.ref} no longer exists, dropping it from state")
                refreshed = refreshed.remove(state.ref)
                continue
            if not isinstance(attributes, dict):
                raise ProviderError(f"describe {state.ref} returned {type(attributes).__name__}")
            refreshed = refreshed.put(replace(
                state,
                id=str(attributes.get("id", state.id)),
                attributes=dict(attributes),
            ))
        return refreshed

    async def plan(self, desired: DesiredState, snapshot: Optional[StateSnapshot] = None,
                   *, refresh: bool = False) -> Plan:
        """
        Validate and plan a desired state.

        Raises:
            ValidationError: the desired state is invalid; no provider was called
        """
        validation = self.validate(desired)
        for warning in validation.warnings:
            logger.warning(warning)
        validation.raise_for_errors()

        if snapshot is None:
            snapshot = self.load_state()
        if refresh:
            snapshot = await self.refresh(snapshot)

        plan = self.planner.plan(desired, snapshot)
        plan.warnings.extend(validation.warnings)
        return plan

    def destroy_plan(self, snapshot: Optional[StateSnapshot] = None) -> Plan:
        """Plan deleting every recorded resource, dependents first."""
        if snapshot is None:
            snapshot = self.load_state()
        return self.planner.destroy_plan(snapshot)

    async def apply(
        self,
        plan: Plan,
        snapshot: Optional[StateSnapshot] = None,
        options: Optional[ApplyOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ApplyResult:
        """Apply a plan; see PlanExecutor.apply."""
        return await self.executor.apply(plan, snapshot, options, cancel_event)

    async def close(self) -> None:
        await self.providers.close()
