"""Dependency graph construction.

An edge A -> B means B must exist (or be updated) before A. Edges come from
two sources:

- reference: an explicit Reference in A's attributes pointing at B
- handle: a literal in a reference-capable attribute of A that equals a
  handle B produces (B's name, or a pinned value such as a static address)

Handle edges keep ordering correct for consumers that spell a shared
resource literally, e.g. a second forwarding rule reusing a static address,
or a backend service naming its security policy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .errors import DuplicateIdentityError, UnresolvedReferenceError, ValidationError
from .models import (
    HANDLE_ATTRIBUTES,
    HANDLE_PRODUCER_FIELDS,
    OUTPUT_FIELDS,
    REFERENCE_TARGETS,
    Reference,
    ResourceId,
    ResourceSpec,
    ResourceType,
    iter_attribute_values,
)

logger = logging.getLogger(__name__)


class EdgeKind(str, Enum):
    """Origin of a dependency edge."""

    REFERENCE = "reference"
    HANDLE = "handle"


@dataclass(frozen=True)
class Edge:
    """Directed dependency: ``source`` depends on ``target``."""

    source: ResourceId
    target: ResourceId
    kind: EdgeKind
    attribute: str


@dataclass
class DependencyGraph:
    """Resources in declaration order plus their dependency edges.

    Attributes:
        specs: Declarations keyed by id, in declaration order.
        edges: Every edge, including parallel edges from different attributes.
        references: (source id, attribute path) -> Reference found there.
    """

    specs: dict[ResourceId, ResourceSpec]
    edges: list[Edge] = field(default_factory=list)
    references: dict[tuple[ResourceId, str], Reference] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._index = {rid: i for i, rid in enumerate(self.specs)}
        self._dependencies: dict[ResourceId, list[ResourceId]] = {rid: [] for rid in self.specs}
        self._dependents: dict[ResourceId, list[ResourceId]] = {rid: [] for rid in self.specs}
        for edge in self.edges:
            self._link(edge)

    def _link(self, edge: Edge) -> None:
        if edge.target not in self._dependencies[edge.source]:
            self._dependencies[edge.source].append(edge.target)
            self._dependents[edge.target].append(edge.source)

    def add_edge(self, edge: Edge) -> None:
        self.edges.append(edge)
        self._link(edge)

    @property
    def nodes(self) -> list[ResourceId]:
        return list(self.specs)

    def dependencies(self, rid: ResourceId) -> list[ResourceId]:
        """Ids ``rid`` depends on, without duplicates."""
        return list(self._dependencies[rid])

    def dependents(self, rid: ResourceId) -> list[ResourceId]:
        """Ids that depend on ``rid``, without duplicates."""
        return list(self._dependents[rid])

    def declaration_index(self, rid: ResourceId) -> int:
        return self._index[rid]

    def reference_targets(self) -> dict[Reference, ResourceId]:
        """Mapping from every declared Reference to its (unresolved) target id."""
        return {reference: reference.target for reference in self.references.values()}


def build_graph(specs: Iterable[ResourceSpec]) -> DependencyGraph:
    """Build the dependency graph of a set of declarations.

    Raises:
        DuplicateIdentityError: Two declarations share an id or a pinned handle.
        UnresolvedReferenceError: A Reference targets an undeclared id.
        ValidationError: A Reference names a wrong target type or an unknown
            output, or a present resource depends on an absent one.
    """
    by_id: dict[ResourceId, ResourceSpec] = {}
    for spec in specs:
        if spec.id in by_id:
            raise DuplicateIdentityError(f"{spec.id} is declared more than once")
        by_id[spec.id] = spec

    graph = DependencyGraph(specs=by_id)
    # (producer, output) -> consumers, for shared handle detection
    consumers: dict[tuple[ResourceId, str], set[ResourceId]] = {}

    for spec in by_id.values():
        for path, pattern, reference in spec.references():
            target_spec = by_id.get(reference.target)
            if target_spec is None:
                raise UnresolvedReferenceError(spec.id, path, reference.target)
            _check_target(spec, path, pattern, reference.target.type)
            outputs = OUTPUT_FIELDS[reference.target.type]
            if reference.output not in outputs:
                raise ValidationError(
                    str(spec.id),
                    [(path, f"unknown output '{reference.output}' of {reference.target.type.value}; "
                            f"expected one of {sorted(outputs)}")],
                )
            _check_presence(spec, path, target_spec)
            graph.references[(spec.id, path)] = reference
            graph.add_edge(Edge(spec.id, reference.target, EdgeKind.REFERENCE, path))
            consumers.setdefault((reference.target, reference.output), set()).add(spec.id)

    handles = _index_handles(by_id.values())

    for spec in by_id.values():
        patterns = HANDLE_ATTRIBUTES[spec.type]
        for path, pattern, value in iter_attribute_values(spec.attributes):
            if not isinstance(value, str) or pattern not in patterns:
                continue
            for target_type in patterns[pattern]:
                match = handles.get((target_type, value))
                if match is None or match[0] == spec.id:
                    continue
                producer, output = match
                _check_presence(spec, path, by_id[producer])
                graph.add_edge(Edge(spec.id, producer, EdgeKind.HANDLE, path))
                consumers.setdefault((producer, output), set()).add(spec.id)

    for (producer, output), users in consumers.items():
        if len(users) > 1:
            logger.info(
                "Shared handle ordered before all consumers",
                extra={
                    "producer": str(producer),
                    "output": output,
                    "consumers": sorted(str(u) for u in users),
                },
            )

    logger.debug(
        "Dependency graph built",
        extra={"nodes": len(graph.specs), "edges": len(graph.edges)},
    )
    return graph


def _check_target(spec: ResourceSpec, path: str, pattern: str, target_type: ResourceType) -> None:
    allowed = REFERENCE_TARGETS[spec.type].get(pattern, frozenset())
    if target_type not in allowed:
        expected = sorted(t.value for t in allowed) or "no references"
        raise ValidationError(
            str(spec.id),
            [(path, f"cannot reference {target_type.value}; expected {expected}")],
        )


def _check_presence(spec: ResourceSpec, path: str, target: ResourceSpec) -> None:
    if spec.present and not target.present:
        raise ValidationError(
            str(spec.id),
            [(path, f"depends on {target.id}, which is declared absent")],
        )


def _index_handles(
    specs: Iterable[ResourceSpec],
) -> dict[tuple[ResourceType, str], tuple[ResourceId, str]]:
    """Map (type, literal) to the resource producing it and the output it matches."""
    handles: dict[tuple[ResourceType, str], tuple[ResourceId, str]] = {}
    for spec in specs:
        handles[(spec.type, spec.name)] = (spec.id, "name")
        if spec.attributes is None:
            continue
        for attr in HANDLE_PRODUCER_FIELDS.get(spec.type, ()):
            value = getattr(spec.attributes, attr, None)
            if not isinstance(value, str):
                continue
            claimed = handles.get((spec.type, value))
            if claimed is not None and claimed[0] != spec.id:
                raise DuplicateIdentityError(
                    f"{claimed[0]} and {spec.id} both claim {spec.type.value} '{value}'"
                )
            handles[(spec.type, value)] = (spec.id, attr)
    return handles
