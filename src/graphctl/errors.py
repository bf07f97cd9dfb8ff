"""Error taxonomy for planning and apply.

Planning errors are fatal: they are raised before any provider call is made
and no partial plan is returned. Provider errors are raised by resource
drivers at apply time and are isolated to the failing operation and its
dependents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ResourceId


class PlanningError(Exception):
    """Base class for errors that abort planning."""

    pass


class ValidationError(PlanningError):
    """Raised when a declaration has missing, unknown or mistyped attributes.

    Attributes:
        resource_id: Rendered id of the offending resource ("Type/name").
        problems: List of (attribute, message) pairs.
    """

    def __init__(self, resource_id: str, problems: list[tuple[str, str]]) -> None:
        self.resource_id = resource_id
        self.problems = problems
        details = "\n".join(f"  - {attr}: {msg}" for attr, msg in problems)
        super().__init__(f"Invalid declaration {resource_id}:\n{details}")


class DuplicateIdentityError(PlanningError):
    """Raised when two declarations share an identity or a stable handle."""

    pass


class UnresolvedReferenceError(PlanningError):
    """Raised when a Reference targets a resource absent from the plan input."""

    def __init__(self, source: ResourceId, attribute: str, target: ResourceId) -> None:
        self.source = source
        self.attribute = attribute
        self.target = target
        super().__init__(
            f"{source} attribute '{attribute}' references {target}, "
            f"which is not declared"
        )


class CycleError(PlanningError):
    """Raised when the dependency graph contains a cycle.

    Attributes:
        cycle: The minimal cycle as an ordered list of ids. Each id depends
            on the next one, and the last depends on the first.
    """

    def __init__(self, cycle: list[ResourceId]) -> None:
        self.cycle = cycle
        path = " -> ".join(str(rid) for rid in [*cycle, cycle[0]])
        super().__init__(f"Dependency cycle detected: {path}")


class ProviderError(Exception):
    """Base class for classified provider errors raised by drivers."""

    retryable: bool = False

    def __init__(self, message: str, *, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class RetryableProviderError(ProviderError):
    """Transient provider error, retried with backoff by the executor."""

    retryable = True


class TerminalProviderError(ProviderError):
    """Non-retryable provider error. Fails the operation and its dependents."""

    retryable = False


class StateConflictError(Exception):
    """Raised when a state store compare-and-swap fails.

    Another run recorded a newer generation of the same identity since this
    plan was computed.
    """

    pass


class StateReadError(PlanningError):
    """Raised when recorded state cannot be read while planning."""

    pass
