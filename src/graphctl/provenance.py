"""Run provenance for audit.

Each plan or apply run is stamped with one structured record answering:
- "Which topology and engine version produced this change?"
- "What did the run decide to do, and what actually happened?"
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .diff import ChangeSet
    from .executor import ExecutionReport

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
ENGINE_VERSION = os.environ.get("GRAPHCTL_VERSION", "dev")


@dataclass
class ChangeSummary:
    """Counts of planned operations by kind."""

    create_count: int = 0
    update_count: int = 0
    delete_count: int = 0
    replace_count: int = 0
    no_change_count: int = 0

    @property
    def total_significant(self) -> int:
        return self.create_count + self.update_count + self.delete_count

    @classmethod
    def from_changeset(cls, changeset: ChangeSet) -> ChangeSummary:
        counts = changeset.summary()
        return cls(
            create_count=counts["Create"],
            update_count=counts["Update"],
            delete_count=counts["Delete"],
            replace_count=counts["Replace"],
            no_change_count=counts["NoOp"],
        )


@dataclass
class RunProvenance:
    """Provenance record of one plan or apply run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    project: str = ""
    engine_version: str = ENGINE_VERSION
    mode: str = "plan"  # plan, apply

    # Source of truth
    git_commit_sha: str = ""
    git_branch: str = ""
    topology_digest: str = ""
    resource_count: int = 0

    # Outcome
    change_summary: ChangeSummary = field(default_factory=ChangeSummary)
    status: str = ""
    succeeded_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0

    # Timing
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None

    def record_report(self, report: ExecutionReport) -> None:
        self.status = report.status.value
        self.succeeded_count = len(report.succeeded)
        self.failed_count = len(report.failed)
        self.skipped_count = len(report.skipped)

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


def topology_digest(canonical_declarations: str) -> str:
    """SHA-256 of the canonical topology text."""
    return hashlib.sha256(canonical_declarations.encode()).hexdigest()


class ProvenanceLogger:
    """Emits provenance records to the structured log."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._git_branch = os.environ.get("GIT_BRANCH", "")

    def create_provenance(self, project: str, mode: str) -> RunProvenance:
        return RunProvenance(
            project=project,
            engine_version=ENGINE_VERSION,
            mode=mode,
            git_commit_sha=self._git_commit_sha,
            git_branch=self._git_branch,
        )

    def log_provenance(self, provenance: RunProvenance) -> None:
        """Log a completed provenance record at a level matching its outcome."""
        log_level = logging.INFO
        if provenance.error or provenance.failed_count:
            log_level = logging.ERROR
        elif provenance.skipped_count:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Run provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "project": provenance.project,
                "mode": provenance.mode,
                "status": provenance.status,
                "git_commit": provenance.git_commit_sha,
                "engine_version": provenance.engine_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
