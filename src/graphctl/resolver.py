"""Deterministic topological ordering of the dependency graph."""

from __future__ import annotations

import heapq
import logging
from collections import deque

from .errors import CycleError
from .graph import DependencyGraph
from .models import ResourceId, ResourceType

logger = logging.getLogger(__name__)

# Tie-break priority when several resources are ready at once:
# network/identity < attachment < routing < entry point
TYPE_TIERS: dict[ResourceType, int] = {
    ResourceType.GLOBAL_ADDRESS: 0,
    ResourceType.MANAGED_CERTIFICATE: 0,
    ResourceType.SECURITY_POLICY: 0,
    ResourceType.COMPUTE_SERVICE: 0,
    ResourceType.IAM_BINDING: 0,
    ResourceType.NETWORK_ENDPOINT_GROUP: 1,
    ResourceType.BACKEND_SERVICE: 1,
    ResourceType.URL_MAP: 2,
    ResourceType.HTTP_PROXY: 2,
    ResourceType.HTTPS_PROXY: 2,
    ResourceType.FORWARDING_RULE: 3,
}


def resolve_order(graph: DependencyGraph) -> list[ResourceId]:
    """Return every node ordered so dependencies come before dependents.

    Kahn's algorithm; among ready nodes the lowest (type tier, declaration
    index) goes first, so identical input always yields the identical order.

    Graphs built from declarations are always acyclic: the type-level
    relation in ``REFERENCE_TARGETS`` has no cycle (no type may point at its
    own type or back up the chain), and the graph builder rejects any other
    target type. ``CycleError`` guards graphs assembled directly, such as
    ones with hand-added edges.

    Raises:
        CycleError: With the minimal cycle when the graph is not acyclic.
    """
    remaining = {rid: len(graph.dependencies(rid)) for rid in graph.nodes}
    ready: list[tuple[int, int, ResourceId]] = []
    for rid, count in remaining.items():
        if count == 0:
            heapq.heappush(ready, _priority(graph, rid))

    order: list[ResourceId] = []
    while ready:
        _, _, rid = heapq.heappop(ready)
        order.append(rid)
        for dependent in graph.dependents(rid):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, _priority(graph, dependent))

    if len(order) < len(remaining):
        blocked = [rid for rid in graph.nodes if remaining[rid] > 0]
        cycle = find_minimal_cycle(graph, blocked)
        logger.error(
            "Dependency cycle detected",
            extra={"cycle": [str(rid) for rid in cycle]},
        )
        raise CycleError(cycle)

    return order


def _priority(graph: DependencyGraph, rid: ResourceId) -> tuple[int, int, ResourceId]:
    return (TYPE_TIERS[rid.type], graph.declaration_index(rid), rid)


def find_minimal_cycle(graph: DependencyGraph, candidates: list[ResourceId]) -> list[ResourceId]:
    """Shortest cycle through any of ``candidates``.

    Runs a breadth-first search from each candidate back to itself along
    dependency edges. Ties are broken by declaration order of the start node.
    The result lists ids so that each depends on the next, and the last on the
    first.
    """
    best: list[ResourceId] | None = None
    for start in candidates:
        cycle = _shortest_cycle_from(graph, start)
        if cycle is not None and (best is None or len(cycle) < len(best)):
            best = cycle
            if len(best) == 1:
                break
    if best is None:
        # Unreachable for a graph where Kahn's algorithm stalled
        raise RuntimeError("cycle expected among blocked nodes but none found")
    return best


def _shortest_cycle_from(graph: DependencyGraph, start: ResourceId) -> list[ResourceId] | None:
    parents: dict[ResourceId, ResourceId] = {}
    queue: deque[ResourceId] = deque([start])
    visited = {start}
    while queue:
        node = queue.popleft()
        for dep in graph.dependencies(node):
            if dep == start:
                path = [node]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            if dep not in visited:
                visited.add(dep)
                parents[dep] = node
                queue.append(dep)
    return None
