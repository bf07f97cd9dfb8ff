"""Orchestration facade: declarations in, ChangeSet or ExecutionReport out.

Planning (graph, order, diff) is pure and fails fast: any PlanningError is
raised before a single provider call is made.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from enum import IntEnum

from .config import Config
from .diff import ChangeSet, DiffEngine, to_jsonable
from .drivers import ProviderClient, ResourceDriver, build_drivers
from .errors import PlanningError
from .executor import ExecutionReport, Executor, PlanStatus
from .graph import DependencyGraph, build_graph
from .models import ResourceId, ResourceSpec, ResourceType
from .normalizer import AttributeNormalizer
from .provenance import ChangeSummary, RunProvenance, get_provenance_logger, topology_digest
from .resolver import resolve_order
from .state import FileStateStore, StateStore

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """Process exit codes of the command line and the runner."""

    CONVERGED = 0
    PLANNING_ERROR = 1
    PARTIALLY_FAILED = 2
    CANCELLED = 3
    CONFIGURATION_ERROR = 4


def exit_code_for(status: PlanStatus) -> ExitCode:
    if status == PlanStatus.PARTIALLY_FAILED:
        return ExitCode.PARTIALLY_FAILED
    if status == PlanStatus.CANCELLED:
        return ExitCode.CANCELLED
    return ExitCode.CONVERGED


def declarations_digest(specs: Sequence[ResourceSpec]) -> str:
    """Stable digest of a set of declarations."""
    canonical = json.dumps(
        [
            {
                "id": str(spec.id),
                "desired_state": spec.desired_state.value,
                "attributes": to_jsonable(spec.desired_attributes()),
            }
            for spec in specs
        ],
        sort_keys=True,
    )
    return topology_digest(canonical)


class Engine:
    """Plans and applies declarations against a State Store."""

    def __init__(
        self,
        store: StateStore,
        drivers: dict[ResourceType, ResourceDriver],
        *,
        project: str = "",
        max_concurrency: int = 4,
        max_attempts: int = 5,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 60.0,
        operation_timeout_seconds: float = 1200,
        normalizer: AttributeNormalizer | None = None,
        audit_logging: bool = True,
    ) -> None:
        self.store = store
        self.drivers = drivers
        self.project = project
        self._normalizer = normalizer or AttributeNormalizer()
        self._executor_options = {
            "max_concurrency": max_concurrency,
            "max_attempts": max_attempts,
            "backoff_base_seconds": backoff_base_seconds,
            "backoff_max_seconds": backoff_max_seconds,
            "operation_timeout_seconds": operation_timeout_seconds,
        }
        self._audit_logging = audit_logging
        self._provenance = get_provenance_logger()

    @classmethod
    def from_config(cls, config: Config, client: ProviderClient) -> Engine:
        return cls(
            FileStateStore(config.state_dir),
            build_drivers(client),
            project=config.project,
            max_concurrency=config.max_concurrency,
            max_attempts=config.max_attempts,
            backoff_base_seconds=config.retry_backoff_base_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
            operation_timeout_seconds=config.operation_timeout_seconds,
            audit_logging=config.enable_audit_logging,
        )

    def resolve(self, specs: Sequence[ResourceSpec]) -> tuple[DependencyGraph, list[ResourceId]]:
        """Build the graph and its deterministic order."""
        graph = build_graph(specs)
        return graph, resolve_order(graph)

    def _plan(self, specs: Sequence[ResourceSpec]) -> ChangeSet:
        logger.info("Planning", extra={"project": self.project, "resources": len(specs)})
        graph, order = self.resolve(specs)
        return DiffEngine(self.store, self._normalizer).diff(graph, order)

    def _start(self, mode: str, specs: Sequence[ResourceSpec]) -> RunProvenance:
        provenance = self._provenance.create_provenance(self.project, mode)
        provenance.topology_digest = declarations_digest(specs)
        provenance.resource_count = len(specs)
        return provenance

    def plan(self, specs: Sequence[ResourceSpec]) -> ChangeSet:
        """Compute the ChangeSet without touching the provider.

        Raises:
            PlanningError: Validation, duplicate identity, unresolved
                reference or cycle. No partial plan is returned.
        """
        provenance = self._start("plan", specs)
        start = time.monotonic()
        try:
            changeset = self._plan(specs)
        except PlanningError as e:
            provenance.error = str(e)
            provenance.error_type = type(e).__name__
            raise
        else:
            provenance.change_summary = ChangeSummary.from_changeset(changeset)
            provenance.status = "Planned"
            return changeset
        finally:
            provenance.duration_seconds = time.monotonic() - start
            if self._audit_logging:
                self._provenance.log_provenance(provenance)

    async def apply(
        self,
        specs: Sequence[ResourceSpec],
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionReport:
        """Plan and apply.

        Raises:
            PlanningError: Before any provider call when planning fails.
        """
        provenance = self._start("apply", specs)
        start = time.monotonic()
        try:
            changeset = self._plan(specs)
            provenance.change_summary = ChangeSummary.from_changeset(changeset)
            report = await self.execute(changeset, cancel_event)
        except PlanningError as e:
            provenance.error = str(e)
            provenance.error_type = type(e).__name__
            raise
        else:
            provenance.record_report(report)
            return report
        finally:
            provenance.duration_seconds = time.monotonic() - start
            if self._audit_logging:
                self._provenance.log_provenance(provenance)

    async def execute(
        self,
        changeset: ChangeSet,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionReport:
        """Apply an already computed ChangeSet."""
        executor = Executor(
            self.drivers,
            self.store,
            normalizer=self._normalizer,
            **self._executor_options,
        )
        return await executor.execute(changeset, cancel_event)
