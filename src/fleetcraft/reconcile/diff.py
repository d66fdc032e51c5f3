"""Planning: diff the desired graph against a state snapshot.

The planner walks declared resources in dependency order, resolves their
attributes against what is already planned, compares the result with the
snapshot and emits create/update/delete/no-op changes plus the ordering
edges between them.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import UndefinedVariableError
from ..providers import ProviderRegistry, ResourceTypeSchema
from ..state import ResourceState, StateSnapshot
from ..values import COMPUTED, AttributeValue, Computed, Literal, ResourceRef, resolve_value, value_references
from .graph import dependency_map, topological_order
from .schema import Change, ChangeAction, DesiredState, Plan

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class _Planned:
    """Planning view of one declared resource."""
    kind: str  # create | update | replace | noop
    after: dict[str, AttributeValue]
    base: dict[str, Any] = field(default_factory=dict)

    def lookup(self, attribute: str) -> Any:
        """Known value of an attribute, COMPUTED when only apply can tell."""
        if attribute in self.after:
            value = self.after[attribute]
            return COMPUTED if isinstance(value, Computed) else value.value
        if self.kind in ("create", "replace"):
            return COMPUTED
        if attribute in self.base:
            return self.base[attribute]
        return COMPUTED if self.kind == "update" else _MISSING

    def view(self) -> dict[str, Any]:
        known = dict(self.base) if self.kind not in ("create", "replace") else {}
        for attribute, value in self.after.items():
            if isinstance(value, Literal):
                known[attribute] = value.value
        return known


def state_attributes(state: ResourceState) -> dict[str, Any]:
    """Recorded attributes with the id folded in."""
    return {**state.attributes, "id": state.id}


class Planner:
    """Compute plans for a desired state against a snapshot."""

    def __init__(self, providers: Optional[ProviderRegistry] = None):
        self.providers = providers

    def _schema(self, resource_type: str) -> ResourceTypeSchema:
        if self.providers is None or not self.providers.has(resource_type):
            return ResourceTypeSchema()
        return self.providers.schema(resource_type)

    def plan(self, desired: DesiredState, snapshot: StateSnapshot) -> Plan:
        """
        Diff a (validated) desired state against a snapshot.

        Raises:
            UndefinedVariableError: an attribute reads a value that does not
                exist in the snapshot
            DependencyCycleError: the graph is cyclic
        """
        variables = desired.variable_values()
        deps = dependency_map(desired)
        index = {r.ref: r.index for r in desired.resources}
        by_ref = {r.ref: r for r in desired.resources}

        order = topological_order(desired.refs(), deps, priority=lambda ref: index[ref])

        planned: dict[ResourceRef, _Planned] = {}
        scope: dict[str, Any] = {"var": variables}
        changes: dict[str, Change] = {}
        unchanged: list[Change] = []
        main_key: dict[ResourceRef, str] = {}
        delete_key: dict[ResourceRef, str] = {}
        deposed_key: dict[ResourceRef, str] = {}
        priorities: dict[str, tuple] = {}

        for ref in order:
            resource = by_ref[ref]
            prior = snapshot.get(ref)
            after = {
                attr: self._plan_value(value, planned, scope)
                for attr, value in resource.attributes.items()
            }
            i = index[ref]

            if prior is None:
                change = Change(ChangeAction.CREATE, ref, after=after, reason="not in state",
                                config=resource.attributes, dependencies=deps[ref])
                changes[change.key] = change
                main_key[ref] = change.key
                priorities[change.key] = (0, i, 1)
                planned[ref] = _Planned("create", after)
            else:
                before = state_attributes(prior)
                differing = [
                    attr for attr, value in after.items()
                    if isinstance(value, Computed) or prior.attributes.get(attr, _MISSING) != value.value
                ]
                schema = self._schema(ref.type)
                immutable = [attr for attr in differing if attr in schema.immutable_fields]

                if not differing:
                    unchanged.append(Change(ChangeAction.NO_OP, ref, before=before, after=after,
                                            config=resource.attributes, dependencies=deps[ref]))
                    planned[ref] = _Planned("noop", after, base=before)
                elif not immutable:
                    change = Change(ChangeAction.UPDATE, ref, before=before, after=after,
                                    reason=f"changed: {', '.join(differing)}",
                                    config=resource.attributes, dependencies=deps[ref])
                    changes[change.key] = change
                    main_key[ref] = change.key
                    priorities[change.key] = (0, i, 1)
                    planned[ref] = _Planned("update", after, base=before)
                else:
                    reason = f"replace: immutable {', '.join(immutable)} changed"
                    create = Change(ChangeAction.CREATE, ref, before=before, after=after,
                                    replace=True, reason=reason,
                                    config=resource.attributes, dependencies=deps[ref])
                    delete = Change(ChangeAction.DELETE, ref, before=before, replace=True,
                                    deposed=not schema.destroy_before_create, reason=reason,
                                    dependencies=prior.dependencies)
                    changes[create.key] = create
                    changes[delete.key] = delete
                    main_key[ref] = create.key
                    priorities[create.key] = (0, i, 1)
                    if delete.deposed:
                        deposed_key[ref] = delete.key
                        priorities[delete.key] = (0, i, 2)
                    else:
                        delete_key[ref] = delete.key
                        priorities[delete.key] = (0, i, 0)
                    planned[ref] = _Planned("replace", after, base=before)

            scope.setdefault(ref.type, {})[ref.name] = planned[ref].view()

        for position, state in enumerate(snapshot):
            if state.ref in by_ref:
                continue
            change = Change(ChangeAction.DELETE, state.ref, before=state_attributes(state),
                            reason="not in desired state", dependencies=state.dependencies)
            changes[change.key] = change
            delete_key[state.ref] = change.key
            priorities[change.key] = (1, position, 0)

        leftover = self._leftover_deposed(snapshot, changes, priorities)
        edges = self._edges(desired, snapshot, deps, main_key, delete_key, deposed_key, leftover)
        keys = list(changes)
        ordered = topological_order(keys, edges, priority=lambda key: priorities[key])
        position = {key: n for n, key in enumerate(ordered)}

        plan = Plan(
            changes=tuple(changes[key] for key in ordered),
            unchanged=tuple(unchanged),
            edges={key: tuple(sorted(set(edges.get(key, ())), key=position.__getitem__))
                   for key in ordered},
            prior=snapshot,
            variables=variables,
            outputs=dict(desired.outputs),
        )
        logger.info(plan.summary_line())
        return plan

    def destroy_plan(self, snapshot: StateSnapshot) -> Plan:
        """Plan deleting every recorded resource, dependents first."""
        changes: dict[str, Change] = {}
        delete_key: dict[ResourceRef, str] = {}
        priorities: dict[str, tuple] = {}
        for position, state in enumerate(snapshot):
            change = Change(ChangeAction.DELETE, state.ref, before=state_attributes(state),
                            reason="destroy", dependencies=state.dependencies)
            changes[change.key] = change
            delete_key[state.ref] = change.key
            priorities[change.key] = (1, position, 0)

        leftover = self._leftover_deposed(snapshot, changes, priorities)
        edges = self._edges(DesiredState(), snapshot, {}, {}, delete_key, {}, leftover)
        ordered = topological_order(list(changes), edges, priority=lambda key: priorities[key])
        position = {key: n for n, key in enumerate(ordered)}
        plan = Plan(
            changes=tuple(changes[key] for key in ordered),
            edges={key: tuple(sorted(set(edges.get(key, ())), key=position.__getitem__))
                   for key in ordered},
            prior=snapshot,
        )
        logger.info(plan.summary_line())
        return plan

    @staticmethod
    def _leftover_deposed(snapshot: StateSnapshot, changes: dict[str, Change],
                          priorities: dict[str, tuple]) -> dict[str, ResourceRef]:
        """Delete every deposed instance an earlier apply failed to remove."""
        leftover: dict[str, ResourceRef] = {}
        for position, state in enumerate(snapshot.deposed):
            change = Change(ChangeAction.DELETE, state.ref, before=state_attributes(state),
                            deposed=True, reason="deposed by an earlier replacement",
                            dependencies=state.dependencies)
            changes[change.key] = change
            leftover[change.key] = state.ref
            priorities[change.key] = (2, position, 0)
        return leftover

    def _plan_value(self, value: AttributeValue, planned: dict[ResourceRef, _Planned],
                    scope: dict[str, Any]) -> AttributeValue:
        if isinstance(value, (Literal, Computed)):
            return value
        for path in value_references(value):
            if path[0] == "var" or len(path) < 3:
                continue
            target = planned.get(ResourceRef(path[0], path[1]))
            if target is None:
                continue
            known = target.lookup(path[2])
            if isinstance(known, Computed):
                return COMPUTED
            if known is _MISSING:
                raise UndefinedVariableError(".".join(path[:3]))
        return Literal(resolve_value(value, scope))

    @staticmethod
    def _edges(
        desired: DesiredState,
        snapshot: StateSnapshot,
        deps: dict[ResourceRef, tuple[ResourceRef, ...]],
        main_key: dict[ResourceRef, str],
        delete_key: dict[ResourceRef, str],
        deposed_key: dict[ResourceRef, str],
        leftover: dict[str, ResourceRef],
    ) -> dict[str, list[str]]:
        """Predecessor keys per change key."""
        preds: dict[str, list[str]] = {}

        def add(key: str, before: str) -> None:
            preds.setdefault(key, [])
            if before not in preds[key]:
                preds[key].append(before)

        # Dependencies are created/updated before their dependents
        for ref, key in main_key.items():
            for dep in deps.get(ref, ()):
                if dep in main_key:
                    add(key, main_key[dep])

        # Destroy-before-create: the delete precedes its replacement
        for ref, key in delete_key.items():
            if ref in main_key:
                add(main_key[ref], key)

        # Dependents (as declared now or as recorded) are deleted first
        removal_deps: dict[ResourceRef, set[ResourceRef]] = {}
        for state in snapshot:
            removal_deps.setdefault(state.ref, set()).update(state.dependencies)
        for ref, dep_refs in deps.items():
            removal_deps.setdefault(ref, set()).update(dep_refs)

        for dependent, dep_refs in removal_deps.items():
            for dep in dep_refs:
                if dep in delete_key and dependent in delete_key:
                    add(delete_key[dep], delete_key[dependent])
                if dep in deposed_key:
                    if dependent in delete_key:
                        add(deposed_key[dep], delete_key[dependent])
                    if dependent in deposed_key:
                        add(deposed_key[dep], deposed_key[dependent])

        # A deposed instance goes once its replacement and every dependent moved on
        for ref, key in deposed_key.items():
            add(key, main_key[ref])
            for dependent, dep_refs in deps.items():
                if ref in dep_refs and dependent in main_key:
                    add(key, main_key[dependent])

        # Leftovers wait for whatever still points at their ref to move on
        for key, ref in leftover.items():
            if ref in main_key:
                add(key, main_key[ref])
            for dependent, dep_refs in deps.items():
                if ref in dep_refs and dependent in main_key:
                    add(key, main_key[dependent])

        return preds
