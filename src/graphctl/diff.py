"""Diff engine: compare declarations with observed state to produce a ChangeSet.

References are resolved in two tiers while planning:

- the referenced resource is unchanged (NoOp): its observed live outputs
- the referenced resource is updated: observed outputs overlaid with the
  literals planned in this run
- the referenced resource is created (or replaced): only planned literals
  are known, every other output is a PendingValue

Pending values make the consumer's fingerprint differ from what was applied,
so a consumer of a replaced producer is updated (or replaced, when the
attribute is immutable). The executor re-resolves every reference from the
State Store at apply time; plan-time values are only used for diffing and
display.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import StateConflictError, StateReadError
from .graph import DependencyGraph
from .models import (
    IMMUTABLE_ATTRIBUTES,
    OUTPUT_FIELDS,
    ObservedState,
    PendingValue,
    Reference,
    ResourceId,
    ResourceSpec,
    substitute_references,
)
from .normalizer import AttributeNormalizer, compute_fingerprint
from .state import StateStore

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    """What an Operation does to its target."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    NOOP = "NoOp"


def operation_key(kind: OperationKind, rid: ResourceId) -> str:
    return f"{kind.value.lower()}:{rid}"


@dataclass
class Operation:
    """A single planned change to one resource.

    Attributes:
        key: Unique key within the ChangeSet, e.g. "create:GlobalAddress/ip".
        desired_attributes: Plain declared attributes, References unresolved.
        resolved_references: Attribute path -> value planned for that Reference
            (a PendingValue when only known after apply).
        fingerprint: Fingerprint of the plan-time resolved attributes.
        depends_on: Keys of operations that must succeed first.
        dependencies: Graph dependencies recorded in ObservedState on success.
        observed_generation: Compare-and-swap token for the state write
            (0 when the record must not exist).
        replace: True for both halves of a delete-then-create replacement.
    """

    key: str
    kind: OperationKind
    target: ResourceId
    desired_attributes: dict[str, Any] = field(default_factory=dict)
    resolved_references: dict[str, Any] = field(default_factory=dict)
    fingerprint: str | None = None
    depends_on: list[str] = field(default_factory=list)
    dependencies: list[ResourceId] = field(default_factory=list)
    observed_generation: int | None = None
    replace: bool = False
    reason: str = ""
    changed_attributes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "target": str(self.target),
            "replace": self.replace,
            "reason": self.reason,
            "changed_attributes": self.changed_attributes,
            "depends_on": self.depends_on,
            "resolved_references": {
                path: to_jsonable(value) for path, value in self.resolved_references.items()
            },
            "desired_attributes": to_jsonable(self.desired_attributes),
            "fingerprint": self.fingerprint,
        }


@dataclass
class ChangeSet:
    """Ordered operations of one plan, consumed once by the executor."""

    operations: list[Operation]
    order: list[ResourceId]

    def __post_init__(self) -> None:
        self._by_key = {op.key: op for op in self.operations}

    def get(self, key: str) -> Operation:
        return self._by_key[key]

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def by_kind(self, kind: OperationKind) -> list[Operation]:
        return [op for op in self.operations if op.kind == kind]

    def for_resource(self, rid: ResourceId) -> list[Operation]:
        return [op for op in self.operations if op.target == rid]

    @property
    def has_changes(self) -> bool:
        return any(op.kind != OperationKind.NOOP for op in self.operations)

    def summary(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in OperationKind}
        for op in self.operations:
            counts[op.kind.value] += 1
        # A replacement counts once as Delete and once as Create
        counts["Replace"] = sum(1 for op in self.operations if op.replace and op.kind == OperationKind.CREATE)
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": [str(rid) for rid in self.order],
            "summary": self.summary(),
            "operations": [op.to_dict() for op in self.operations],
        }


def to_jsonable(value: Any) -> Any:
    if isinstance(value, PendingValue):
        return str(value)
    if isinstance(value, Reference):
        return {"ref": str(value.target), "field": value.output}
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    return value


class DiffEngine:
    """Computes the ChangeSet for a graph against a State Store."""

    def __init__(self, store: StateStore, normalizer: AttributeNormalizer | None = None) -> None:
        self._store = store
        self._normalizer = normalizer or AttributeNormalizer()

    def diff(self, graph: DependencyGraph, order: list[ResourceId]) -> ChangeSet:
        """Plan operations for every declared resource.

        Args:
            graph: Dependency graph of the declarations.
            order: Resolver order (dependencies first).

        Returns:
            ChangeSet in a valid run order: deletes first in reverse resolver
            order, then every other operation in resolver order, with any
            operation moved after the operations it depends on.

        Raises:
            StateReadError: If a recorded state cannot be read.
        """
        try:
            observed = {rid: self._store.get(rid) for rid in order}
        except StateConflictError as e:
            raise StateReadError(str(e)) from e
        outputs: dict[ResourceId, dict[str, Any]] = {}
        present_ops: dict[ResourceId, Operation] = {}
        delete_ops: dict[ResourceId, Operation] = {}
        absent_noops: dict[ResourceId, Operation] = {}

        for rid in order:
            spec = graph.specs[rid]
            obs = observed[rid]
            if not spec.present:
                if obs is None:
                    absent_noops[rid] = Operation(
                        key=operation_key(OperationKind.NOOP, rid),
                        kind=OperationKind.NOOP,
                        target=rid,
                        reason="declared absent and not observed",
                    )
                else:
                    delete_ops[rid] = Operation(
                        key=operation_key(OperationKind.DELETE, rid),
                        kind=OperationKind.DELETE,
                        target=rid,
                        observed_generation=obs.generation,
                        reason="declared absent",
                    )
                continue

            ops = self._plan_present(graph, spec, obs, outputs)
            for op in ops:
                if op.kind == OperationKind.DELETE:
                    delete_ops[rid] = op
                else:
                    present_ops[rid] = op

        self._link_present(graph, present_ops, delete_ops)
        self._link_deletes(graph, observed, present_ops, delete_ops)

        preferred: list[Operation] = [
            delete_ops[rid] for rid in reversed(order) if rid in delete_ops
        ]
        for rid in order:
            if rid in absent_noops:
                preferred.append(absent_noops[rid])
            elif rid in present_ops:
                preferred.append(present_ops[rid])

        changeset = ChangeSet(operations=_schedule(preferred), order=list(order))
        logger.info("Plan computed", extra={"summary": changeset.summary()})
        return changeset

    def _plan_present(
        self,
        graph: DependencyGraph,
        spec: ResourceSpec,
        obs: ObservedState | None,
        outputs: dict[ResourceId, dict[str, Any]],
    ) -> list[Operation]:
        rid = spec.id
        desired = spec.desired_attributes()

        def planned(reference: Reference) -> Any:
            known = outputs.get(reference.target, {})
            if reference.output in known:
                return known[reference.output]
            return PendingValue(reference)

        resolved_references = {
            path: planned(reference)
            for (source, path), reference in graph.references.items()
            if source == rid
        }
        resolved = substitute_references(desired, planned)
        fingerprint = compute_fingerprint(spec.type, resolved, self._normalizer)
        literals = self._literal_outputs(spec, resolved)

        base = {
            "target": rid,
            "desired_attributes": desired,
            "resolved_references": resolved_references,
            "fingerprint": fingerprint,
            "dependencies": graph.dependencies(rid),
        }

        if obs is None:
            outputs[rid] = literals
            return [
                Operation(
                    key=operation_key(OperationKind.CREATE, rid),
                    kind=OperationKind.CREATE,
                    observed_generation=0,
                    reason="not observed",
                    **base,
                )
            ]

        if fingerprint == obs.fingerprint:
            outputs[rid] = dict(obs.live_attributes)
            return [
                Operation(
                    key=operation_key(OperationKind.NOOP, rid),
                    kind=OperationKind.NOOP,
                    observed_generation=obs.generation,
                    reason="in sync",
                    **base,
                )
            ]

        changed = self._changed_attributes(spec, resolved, obs.applied_attributes)
        immutable = sorted(set(changed) & IMMUTABLE_ATTRIBUTES[spec.type])
        if immutable:
            outputs[rid] = literals
            delete_key = operation_key(OperationKind.DELETE, rid)
            return [
                Operation(
                    key=delete_key,
                    kind=OperationKind.DELETE,
                    target=rid,
                    observed_generation=obs.generation,
                    replace=True,
                    reason=f"immutable attributes changed: {', '.join(immutable)}",
                    changed_attributes=changed,
                ),
                Operation(
                    key=operation_key(OperationKind.CREATE, rid),
                    kind=OperationKind.CREATE,
                    observed_generation=0,
                    replace=True,
                    reason=f"immutable attributes changed: {', '.join(immutable)}",
                    changed_attributes=changed,
                    depends_on=[delete_key],
                    **base,
                ),
            ]

        outputs[rid] = {**obs.live_attributes, **literals}
        return [
            Operation(
                key=operation_key(OperationKind.UPDATE, rid),
                kind=OperationKind.UPDATE,
                observed_generation=obs.generation,
                reason=f"attributes changed: {', '.join(changed) or 'fingerprint'}",
                changed_attributes=changed,
                **base,
            )
        ]

    def _literal_outputs(self, spec: ResourceSpec, resolved: dict[str, Any]) -> dict[str, Any]:
        """Outputs known before apply: the name and same-named declared attributes."""
        known: dict[str, Any] = {"name": spec.name}
        for output in OUTPUT_FIELDS[spec.type]:
            if output in resolved:
                known[output] = resolved[output]
        return known

    def _changed_attributes(
        self,
        spec: ResourceSpec,
        desired: dict[str, Any],
        applied: dict[str, Any],
    ) -> list[str]:
        before = self._normalizer.canonicalize(spec.type, applied)
        after = self._normalizer.canonicalize(spec.type, desired)
        keys = set(before) | set(after)
        return sorted(k for k in keys if before.get(k) != after.get(k))

    def _link_present(
        self,
        graph: DependencyGraph,
        present_ops: dict[ResourceId, Operation],
        delete_ops: dict[ResourceId, Operation],
    ) -> None:
        for rid, op in present_ops.items():
            for dep in graph.dependencies(rid):
                dep_op = present_ops.get(dep)
                if dep_op is not None and dep_op.key not in op.depends_on:
                    op.depends_on.append(dep_op.key)

    def _link_deletes(
        self,
        graph: DependencyGraph,
        observed: dict[ResourceId, ObservedState | None],
        present_ops: dict[ResourceId, Operation],
        delete_ops: dict[ResourceId, Operation],
    ) -> None:
        """A Delete waits for every referrer to stop using its target.

        Referrers come from the graph and from dependencies recorded when the
        referrer was last applied. A referrer that is itself deleted gates
        through its Delete; for a pure delete, a referrer that stays present
        gates through its Create/Update (which drops the reference).
        """
        for rid, op in delete_ops.items():
            referrers = set(graph.dependents(rid))
            for other, state in observed.items():
                if state is not None and rid in state.dependencies:
                    referrers.add(other)
            referrers.discard(rid)

            for referrer in sorted(referrers, key=graph.declaration_index):
                gate = delete_ops.get(referrer)
                if gate is None and not op.replace:
                    candidate = present_ops.get(referrer)
                    if candidate is not None and candidate.kind != OperationKind.NOOP:
                        gate = candidate
                if gate is not None and gate.key not in op.depends_on:
                    op.depends_on.append(gate.key)


def _schedule(preferred: list[Operation]) -> list[Operation]:
    """Order operations so each follows everything it depends on.

    Among the operations whose dependencies are already listed, the earliest
    in ``preferred`` goes next.
    """
    listed: set[str] = set()
    known = {op.key for op in preferred}
    remaining = list(preferred)
    scheduled: list[Operation] = []
    while remaining:
        ready = next(
            (
                op
                for op in remaining
                if all(dep in listed or dep not in known for dep in op.depends_on)
            ),
            remaining[0],
        )
        remaining.remove(ready)
        scheduled.append(ready)
        listed.add(ready.key)
    return scheduled
