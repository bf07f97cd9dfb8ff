"""Configuration management with validation.

Limits are enforced at configuration load time so a run never starts with
an unbounded worker pool or retry loop.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_MAX_CONCURRENCY = 4
MIN_MAX_CONCURRENCY = 1
MAX_MAX_CONCURRENCY = 32

DEFAULT_MAX_ATTEMPTS = 5
MAX_MAX_ATTEMPTS = 20

DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 2.0
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 60.0

# Provider long-running operations (certificates, services) can take a while
DEFAULT_OPERATION_TIMEOUT_SECONDS = 1200

DEFAULT_STATE_DIR = ".graphctl/state"

# Security constraints - enforced limits to prevent abuse
MAX_TOPOLOGY_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max topology file
MAX_RESOURCES_PER_TOPOLOGY = 500

# Input validation patterns
VALID_PROJECT_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"


@dataclass(frozen=True)
class Config:
    """Engine configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-apply.
    """

    # Required fields
    project: str

    # Paths
    state_dir: Path = field(default_factory=lambda: Path(DEFAULT_STATE_DIR))
    topology_path: Path | None = None

    # Execution
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    retry_backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS

    # Behavior
    dry_run: bool = False
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.project:
            errors.append("GRAPHCTL_PROJECT is required")
        elif not re.match(VALID_PROJECT_PATTERN, self.project):
            errors.append(f"GRAPHCTL_PROJECT must be a valid project id: {self.project}")

        if self.topology_path is not None and not self.topology_path.exists():
            errors.append(f"Topology path does not exist: {self.topology_path}")

        if not (MIN_MAX_CONCURRENCY <= self.max_concurrency <= MAX_MAX_CONCURRENCY):
            errors.append(
                f"GRAPHCTL_MAX_CONCURRENCY must be between {MIN_MAX_CONCURRENCY} "
                f"and {MAX_MAX_CONCURRENCY}"
            )

        if not (1 <= self.max_attempts <= MAX_MAX_ATTEMPTS):
            errors.append(f"GRAPHCTL_MAX_ATTEMPTS must be between 1 and {MAX_MAX_ATTEMPTS}")

        if self.retry_backoff_base_seconds < 0:
            errors.append("GRAPHCTL_RETRY_BACKOFF_BASE cannot be negative")

        if self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            errors.append("GRAPHCTL_RETRY_BACKOFF_MAX cannot be lower than GRAPHCTL_RETRY_BACKOFF_BASE")

        if self.operation_timeout_seconds < 1:
            errors.append("GRAPHCTL_OPERATION_TIMEOUT must be at least 1 second")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GRAPHCTL_PROJECT: Target project id
            GRAPHCTL_STATE_DIR: Directory of the file state store (default: .graphctl/state)
            GRAPHCTL_TOPOLOGY: YAML topology file or directory
            GRAPHCTL_MAX_CONCURRENCY: Concurrent operations, 1-32 (default: 4)
            GRAPHCTL_MAX_ATTEMPTS: Attempts per operation, 1-20 (default: 5)
            GRAPHCTL_RETRY_BACKOFF_BASE: Base retry backoff in seconds (default: 2)
            GRAPHCTL_RETRY_BACKOFF_MAX: Maximum retry backoff in seconds (default: 60)
            GRAPHCTL_OPERATION_TIMEOUT: Timeout per provider call in seconds (default: 1200)
            GRAPHCTL_DRY_RUN: If "true", only plan without applying (default: false)
            GRAPHCTL_ENABLE_AUDIT_LOGGING: Enable JSON audit logs (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        topology = os.environ.get("GRAPHCTL_TOPOLOGY")

        return cls(
            project=os.environ.get("GRAPHCTL_PROJECT", ""),
            state_dir=Path(os.environ.get("GRAPHCTL_STATE_DIR", DEFAULT_STATE_DIR)),
            topology_path=Path(topology) if topology else None,
            max_concurrency=get_int("GRAPHCTL_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            max_attempts=get_int("GRAPHCTL_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            retry_backoff_base_seconds=get_float(
                "GRAPHCTL_RETRY_BACKOFF_BASE", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
            retry_backoff_max_seconds=get_float(
                "GRAPHCTL_RETRY_BACKOFF_MAX", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
            ),
            operation_timeout_seconds=get_int(
                "GRAPHCTL_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            dry_run=get_bool("GRAPHCTL_DRY_RUN", False),
            enable_audit_logging=get_bool("GRAPHCTL_ENABLE_AUDIT_LOGGING", True),
        )
