"""Dependency graph helpers: implicit edges, cycle detection, ordering."""
import heapq
from typing import Any, Callable, Hashable, Iterable, Mapping, Optional, Sequence

from ..errors import DependencyCycleError
from ..values import RESERVED_ROOTS, ResourceRef, value_references
from .schema import DesiredState, Resource


def reference_targets(resource: Resource) -> list[ResourceRef]:
    """Resources read by a resource's attribute expressions, in reading order."""
    targets: list[ResourceRef] = []
    for value in resource.attributes.values():
        for path in value_references(value):
            if path[0] in RESERVED_ROOTS or len(path) < 2:
                continue
            ref = ResourceRef(path[0], path[1])
            if ref not in targets:
                targets.append(ref)
    return targets


def dependencies_of(resource: Resource, declared: Iterable[ResourceRef]) -> tuple[ResourceRef, ...]:
    """Explicit ``depends_on`` plus implicit reference edges, declared targets only."""
    declared = set(declared)
    deps: list[ResourceRef] = []
    for ref in list(resource.depends_on) + reference_targets(resource):
        if ref in declared and ref != resource.ref and ref not in deps:
            deps.append(ref)
    return tuple(deps)


def dependency_map(desired: DesiredState) -> dict[ResourceRef, tuple[ResourceRef, ...]]:
    declared = desired.refs()
    return {r.ref: dependencies_of(r, declared) for r in desired.resources}


def find_cycle(nodes: Sequence[Hashable],
               edges: Mapping[Hashable, Sequence[Hashable]]) -> Optional[list]:
    """Return one cycle as a path (first node repeated at the end), or None.

    Nodes are visited in the given order so the reported cycle is stable.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node: WHITE for node in nodes}
    stack: list = []

    def visit(node) -> Optional[list]:
        color[node] = GREY
        stack.append(node)
        for nxt in edges.get(node, ()):
            if nxt not in color:
                continue
            if color[nxt] == GREY:
                return stack[stack.index(nxt):] + [nxt]
            if color[nxt] == WHITE:
                found = visit(nxt)
                if found:
                    return found
        stack.pop()
        color[node] = BLACK
        return None

    for node in nodes:
        if color[node] == WHITE:
            found = visit(node)
            if found:
                return found
    return None


def topological_order(
    nodes: Sequence[Hashable],
    predecessors: Mapping[Hashable, Iterable[Hashable]],
    priority: Callable[[Any], Any],
) -> list:
    """Kahn's algorithm; among ready nodes the lowest ``priority`` goes first.

    Raises:
        DependencyCycleError: the graph is not acyclic
    """
    node_set = set(nodes)
    indegree = {node: 0 for node in nodes}
    successors: dict = {node: [] for node in nodes}
    for node in nodes:
        for pred in set(predecessors.get(node, ())):
            if pred in node_set:
                indegree[node] += 1
                successors[pred].append(node)

    heap = [(priority(node), i, node) for i, node in enumerate(nodes) if indegree[node] == 0]
    heapq.heapify(heap)
    position = {node: i for i, node in enumerate(nodes)}
    order = []
    while heap:
        _, _, node = heapq.heappop(heap)
        order.append(node)
        for succ in successors[node]:
            indegree[succ] -= 1
            if indegree[succ] == 0:
                heapq.heappush(heap, (priority(succ), position[succ], succ))

    if len(order) != len(nodes):
        remaining = [n for n in nodes if n not in set(order)]
        cycle = find_cycle(remaining, {n: list(predecessors.get(n, ())) for n in remaining})
        raise DependencyCycleError([str(n) for n in (cycle or remaining)])
    return order


def resource_cycle(desired: DesiredState) -> Optional[list[str]]:
    """Cycle over declared resources as ``type.name`` strings, if any."""
    deps = dependency_map(desired)
    cycle = find_cycle(desired.refs(), deps)
    return [str(ref) for ref in cycle] if cycle else None
