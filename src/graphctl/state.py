"""State Store: last-known observed state per resource identity.

The store is the only shared mutable resource. Every write is a
compare-and-swap on ``generation`` under a per-identity lock, so two runs
racing on the same identity cannot lose an update.

``expected_generation`` semantics for put/delete:
- None: unconditional write
- 0: the record must not exist yet
- N: the stored record must have generation N
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from .errors import StateConflictError
from .models import ObservedState, ResourceId

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Per-identity atomic storage of ObservedState."""

    def get(self, rid: ResourceId) -> ObservedState | None: ...

    def put(self, state: ObservedState, expected_generation: int | None = None) -> ObservedState: ...

    def delete(self, rid: ResourceId, expected_generation: int | None = None) -> None: ...

    def list(self) -> list[ObservedState]: ...


class _IdentityLocks:
    """Lazily created lock per identity."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[ResourceId, threading.Lock] = {}

    @contextmanager
    def hold(self, rid: ResourceId) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(rid, threading.Lock())
        with lock:
            yield


def _check_generation(rid: ResourceId, current: ObservedState | None, expected: int | None) -> None:
    if expected is None:
        return
    actual = current.generation if current is not None else 0
    if actual != expected:
        raise StateConflictError(
            f"{rid}: expected generation {expected}, found {actual}"
        )


class InMemoryStateStore:
    """Process-local state store, used for tests and dry runs."""

    def __init__(self, states: list[ObservedState] | None = None) -> None:
        self._locks = _IdentityLocks()
        self._states: dict[ResourceId, ObservedState] = {}
        for state in states or []:
            self._states[state.id] = state

    def get(self, rid: ResourceId) -> ObservedState | None:
        return self._states.get(rid)

    def put(self, state: ObservedState, expected_generation: int | None = None) -> ObservedState:
        """Store ``state`` with the next generation and return the stored copy."""
        with self._locks.hold(state.id):
            current = self._states.get(state.id)
            _check_generation(state.id, current, expected_generation)
            generation = (current.generation if current is not None else 0) + 1
            stored = state.model_copy(update={"generation": generation})
            self._states[state.id] = stored
            return stored

    def delete(self, rid: ResourceId, expected_generation: int | None = None) -> None:
        with self._locks.hold(rid):
            current = self._states.get(rid)
            _check_generation(rid, current, expected_generation)
            self._states.pop(rid, None)

    def list(self) -> list[ObservedState]:
        return sorted(self._states.values(), key=lambda s: str(s.id))


class FileStateStore:
    """One JSON document per identity under a directory.

    Writes go to a temporary file in the same directory followed by an atomic
    rename, so a crash never leaves a truncated record.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._locks = _IdentityLocks()

    def _path(self, rid: ResourceId) -> Path:
        return self.directory / f"{rid.type.value}__{rid.name}.json"

    def _read(self, path: Path) -> ObservedState | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return ObservedState.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StateConflictError(f"Corrupt state record {path}: {e}") from e

    def get(self, rid: ResourceId) -> ObservedState | None:
        return self._read(self._path(rid))

    def put(self, state: ObservedState, expected_generation: int | None = None) -> ObservedState:
        path = self._path(state.id)
        with self._locks.hold(state.id):
            current = self._read(path)
            _check_generation(state.id, current, expected_generation)
            generation = (current.generation if current is not None else 0) + 1
            stored = state.model_copy(update={"generation": generation})

            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(stored.model_dump_json(indent=2))
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

            logger.debug(
                "State recorded",
                extra={"resource": str(state.id), "generation": generation},
            )
            return stored

    def delete(self, rid: ResourceId, expected_generation: int | None = None) -> None:
        path = self._path(rid)
        with self._locks.hold(rid):
            current = self._read(path)
            _check_generation(rid, current, expected_generation)
            path.unlink(missing_ok=True)

    def list(self) -> list[ObservedState]:
        states = []
        for path in sorted(self.directory.glob("*.json")):
            if path.name.startswith(".tmp-"):
                continue
            state = self._read(path)
            if state is not None:
                states.append(state)
        return states
