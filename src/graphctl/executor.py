"""Executor: applies a ChangeSet with bounded concurrency.

Per-operation state machine: Pending -> Applying -> Succeeded | Failed, or
Pending -> Skipped when a dependency failed or the run was cancelled.

An operation starts only once every operation it depends on has Succeeded
and, for creates and updates, has had its ObservedState written to the
State Store. References are resolved at apply time from the State Store, so
a consumer always sees its producer's live post-apply outputs.

Blocking driver calls run in a thread pool, each bounded by a timeout; a
call that times out is abandoned, not joined. State Store reads and writes
run on the event loop's default executor.
Retryable provider errors back off exponentially with jitter.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .diff import ChangeSet, Operation, OperationKind
from .drivers import ResourceDriver
from .errors import ProviderError, RetryableProviderError, StateConflictError
from .models import ObservedState, Reference, ResourceType, iter_attribute_values, substitute_references
from .normalizer import AttributeNormalizer, compute_fingerprint
from .state import StateStore

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    """Lifecycle of a single operation."""

    PENDING = "Pending"
    APPLYING = "Applying"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class PlanStatus(str, Enum):
    """Lifecycle of a whole run."""

    PLANNING = "Planning"
    EXECUTING = "Executing"
    CONVERGED = "Converged"
    PARTIALLY_FAILED = "PartiallyFailed"
    CANCELLED = "Cancelled"


@dataclass
class OperationResult:
    """Outcome of one operation."""

    key: str
    kind: OperationKind
    target: str
    status: OperationStatus = OperationStatus.PENDING
    attempts: int = 0
    error: str | None = None
    error_type: str | None = None
    retryable: bool | None = None
    reason: str | None = None
    resolved_references: dict[str, Any] = field(default_factory=dict)
    live_attributes: dict[str, Any] | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "target": self.target,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
            "reason": self.reason,
            "resolved_references": self.resolved_references,
        }


@dataclass
class ExecutionReport:
    """Every operation of a run with its final status."""

    status: PlanStatus
    results: list[OperationResult]
    started_at: datetime
    finished_at: datetime

    def get(self, key: str) -> OperationResult:
        for result in self.results:
            if result.key == key:
                return result
        raise KeyError(key)

    def with_status(self, status: OperationStatus) -> list[OperationResult]:
        return [r for r in self.results if r.status == status]

    @property
    def succeeded(self) -> list[OperationResult]:
        return self.with_status(OperationStatus.SUCCEEDED)

    @property
    def failed(self) -> list[OperationResult]:
        return self.with_status(OperationStatus.FAILED)

    @property
    def skipped(self) -> list[OperationResult]:
        return self.with_status(OperationStatus.SKIPPED)

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OperationStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "summary": self.summary(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": (self.finished_at - self.started_at).total_seconds(),
            "operations": [r.to_dict() for r in self.results],
        }


_BLOCKING = {OperationStatus.FAILED, OperationStatus.SKIPPED}


class Executor:
    """Applies ChangeSets through resource drivers."""

    def __init__(
        self,
        drivers: dict[ResourceType, ResourceDriver],
        store: StateStore,
        *,
        max_concurrency: int = 4,
        max_attempts: int = 5,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 60.0,
        operation_timeout_seconds: float = 1200,
        normalizer: AttributeNormalizer | None = None,
    ) -> None:
        self._drivers = drivers
        self._store = store
        self._max_concurrency = max_concurrency
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._timeout = operation_timeout_seconds
        self._normalizer = normalizer or AttributeNormalizer()
        self.status = PlanStatus.PLANNING

    async def execute(
        self,
        changeset: ChangeSet,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionReport:
        """Apply every operation of the ChangeSet.

        Args:
            changeset: Planned operations.
            cancel_event: When set, running operations finish but nothing new
                starts. Unstarted operations are reported Skipped.

        Returns:
            ExecutionReport listing every operation.
        """
        self.status = PlanStatus.EXECUTING
        started_at = datetime.now(UTC)
        results = {
            op.key: OperationResult(key=op.key, kind=op.kind, target=str(op.target))
            for op in changeset.operations
        }
        pending = [op.key for op in changeset.operations]
        running: dict[asyncio.Task[None], str] = {}
        cancelled = False

        logger.info(
            "Executing plan",
            extra={"operations": len(pending), "max_concurrency": self._max_concurrency},
        )

        # Not joined here: a call that timed out may still be running
        pool = ThreadPoolExecutor(max_workers=self._max_concurrency, thread_name_prefix="graphctl-op")
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set() and not cancelled:
                    cancelled = True
                    logger.warning(
                        "Cancellation requested, no new operations will start",
                        extra={"running": len(running), "pending": len(pending)},
                    )

                self._skip_blocked(changeset, results, pending)

                if not cancelled:
                    for key in list(pending):
                        if len(running) >= self._max_concurrency:
                            break
                        op = changeset.get(key)
                        if all(
                            results[dep].status == OperationStatus.SUCCEEDED
                            for dep in op.depends_on
                            if dep in results
                        ):
                            pending.remove(key)
                            task = asyncio.create_task(self._run(op, results[key], pool))
                            running[task] = key

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    running.pop(task)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        for key in pending:
            result = results[key]
            result.status = OperationStatus.SKIPPED
            result.reason = "cancelled" if cancelled else "dependencies never completed"
            if not cancelled:
                logger.error("Operation could not be scheduled", extra={"operation": key})

        ordered = [results[op.key] for op in changeset.operations]
        if any(r.status == OperationStatus.FAILED for r in ordered):
            self.status = PlanStatus.PARTIALLY_FAILED
        elif any(r.reason == "cancelled" for r in ordered):
            self.status = PlanStatus.CANCELLED
        else:
            self.status = PlanStatus.CONVERGED

        report = ExecutionReport(
            status=self.status,
            results=ordered,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )
        logger.info(
            "Plan execution finished",
            extra={"status": report.status.value, "summary": report.summary()},
        )
        return report

    def _skip_blocked(
        self,
        changeset: ChangeSet,
        results: dict[str, OperationResult],
        pending: list[str],
    ) -> None:
        """Skip pending operations with a failed or skipped dependency, transitively."""
        changed = True
        while changed:
            changed = False
            for key in list(pending):
                op = changeset.get(key)
                blocker = next(
                    (dep for dep in op.depends_on if dep in results and results[dep].status in _BLOCKING),
                    None,
                )
                if blocker is None:
                    continue
                pending.remove(key)
                result = results[key]
                result.status = OperationStatus.SKIPPED
                result.reason = f"dependency {blocker} {results[blocker].status.value.lower()}"
                changed = True
                logger.info(
                    "Operation skipped",
                    extra={"operation": key, "reason": result.reason},
                )

    async def _run(self, op: Operation, result: OperationResult, pool: ThreadPoolExecutor) -> None:
        result.status = OperationStatus.APPLYING
        result.started_at = datetime.now(UTC)

        for attempt in range(1, self._max_attempts + 1):
            result.attempts = attempt
            try:
                await self._apply(op, result, pool)
            except ProviderError as e:
                if e.retryable and attempt < self._max_attempts:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        "Operation failed, retrying",
                        extra={
                            "operation": op.key,
                            "attempt": attempt,
                            "max_attempts": self._max_attempts,
                            "wait_seconds": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue
                self._fail(op, result, e, retryable=e.retryable)
                return
            except StateConflictError as e:
                self._fail(op, result, e, retryable=False)
                return
            except TimeoutError as e:
                self._fail(op, result, e, retryable=False, message=f"timed out after {self._timeout}s")
                return
            except Exception as e:
                logger.exception("Unexpected error applying operation", extra={"operation": op.key})
                self._fail(op, result, e, retryable=False)
                return
            else:
                result.status = OperationStatus.SUCCEEDED
                result.finished_at = datetime.now(UTC)
                if op.kind != OperationKind.NOOP:
                    logger.info(
                        "Operation succeeded",
                        extra={"operation": op.key, "attempts": attempt},
                    )
                return

    def _backoff(self, attempt: int) -> float:
        # Exponential backoff with jitter, capped
        backoff = min(self._backoff_max, self._backoff_base * (2 ** (attempt - 1)))
        jitter = random.uniform(0, backoff * 0.2)
        return backoff + jitter

    def _fail(
        self,
        op: Operation,
        result: OperationResult,
        error: Exception,
        *,
        retryable: bool,
        message: str | None = None,
    ) -> None:
        result.status = OperationStatus.FAILED
        result.finished_at = datetime.now(UTC)
        result.error = message or str(error)
        result.error_type = type(error).__name__
        result.retryable = retryable
        logger.error(
            "Operation failed",
            extra={
                "operation": op.key,
                "attempts": result.attempts,
                "error_type": result.error_type,
                "error": result.error,
            },
        )

    async def _call(self, pool: ThreadPoolExecutor, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(pool, fn, *args), timeout=self._timeout)

    async def _store_call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        # State store I/O runs on the loop's default executor, off the provider pool
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _resolve(self, reference: Reference) -> Any:
        state = self._store.get(reference.target)
        if state is None:
            raise RetryableProviderError(f"{reference.target} has no recorded state yet")
        value = state.live_attributes.get(reference.output)
        if value is None:
            raise RetryableProviderError(f"Output {reference} is not available yet")
        return value

    def _resolve_attributes(self, op: Operation) -> tuple[dict[str, Any], dict[str, Any]]:
        """Resolved references by attribute path, and the substituted attributes."""
        resolved = {
            path: self._resolve(leaf)
            for path, _, leaf in iter_attribute_values(op.desired_attributes)
            if isinstance(leaf, Reference)
        }
        return resolved, substitute_references(op.desired_attributes, self._resolve)

    async def _apply(self, op: Operation, result: OperationResult, pool: ThreadPoolExecutor) -> None:
        if op.kind == OperationKind.NOOP:
            return

        driver = self._drivers[op.target.type]
        name = op.target.name

        if op.kind == OperationKind.DELETE:
            state = await self._store_call(self._store.get, op.target)
            if state is None:
                logger.info("Nothing recorded to delete", extra={"operation": op.key})
                return
            await self._call(pool, driver.delete, name, state.applied_attributes)
            await self._store_call(
                self._store.delete, op.target, expected_generation=op.observed_generation
            )
            return

        result.resolved_references, attributes = await self._store_call(self._resolve_attributes, op)

        if op.kind == OperationKind.CREATE:
            live = await self._call(pool, driver.create, name, attributes)
        else:
            live = await self._call(pool, driver.update, name, attributes)

        # Recorded before any dependent becomes eligible
        await self._store_call(
            self._store.put,
            ObservedState(
                id=op.target,
                live_attributes=live,
                applied_attributes=attributes,
                fingerprint=compute_fingerprint(op.target.type, attributes, self._normalizer),
                dependencies=op.dependencies,
            ),
            expected_generation=op.observed_generation,
        )
        result.live_attributes = live
