"""Tests for run provenance tracking."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from topologies import edge_topology

from graphctl.diff import OperationKind
from graphctl.engine import Engine
from graphctl.executor import ExecutionReport, OperationResult, OperationStatus, PlanStatus
from graphctl.provenance import (
    ENGINE_VERSION,
    ChangeSummary,
    ProvenanceLogger,
    RunProvenance,
    get_provenance_logger,
    topology_digest,
)


def report_with(*statuses: OperationStatus) -> ExecutionReport:
    now = datetime.now(UTC)
    results = [
        OperationResult(key=f"create:GlobalAddress/ip-{i}", kind=OperationKind.CREATE, target=f"GlobalAddress/ip-{i}", status=s)
        for i, s in enumerate(statuses)
    ]
    status = PlanStatus.PARTIALLY_FAILED if OperationStatus.FAILED in statuses else PlanStatus.CONVERGED
    return ExecutionReport(status=status, results=results, started_at=now, finished_at=now)


class TestChangeSummary:
    """Tests for ChangeSummary dataclass."""

    def test_total_significant_empty(self) -> None:
        """Empty summary has zero significant changes."""
        assert ChangeSummary().total_significant == 0

    def test_total_significant_all_types(self) -> None:
        """Total is sum of create + update + delete."""
        summary = ChangeSummary(
            create_count=5,
            update_count=3,
            delete_count=2,
            replace_count=2,
            no_change_count=10,
        )
        assert summary.total_significant == 10

    def test_from_changeset(self, engine: Engine) -> None:
        """Counts are taken from the plan summary."""
        summary = ChangeSummary.from_changeset(engine.plan(edge_topology()))

        assert summary.create_count == 5
        assert summary.update_count == 0
        assert summary.no_change_count == 0
        assert summary.replace_count == 0


class TestRunProvenance:
    """Tests for RunProvenance dataclass."""

    def test_default_values(self) -> None:
        """Default provenance has expected values."""
        provenance = RunProvenance()
        assert provenance.project == ""
        assert provenance.engine_version == ENGINE_VERSION
        assert provenance.mode == "plan"
        assert provenance.failed_count == 0
        assert provenance.error is None

    def test_timestamp_is_utc(self) -> None:
        """Timestamp uses UTC timezone."""
        assert RunProvenance().timestamp.tzinfo is UTC

    def test_to_dict(self) -> None:
        """to_dict converts to serializable dictionary."""
        provenance = RunProvenance(
            project="demo-project",
            mode="apply",
            status="Converged",
            change_summary=ChangeSummary(create_count=3),
        )
        result = provenance.to_dict()

        assert result["project"] == "demo-project"
        assert result["mode"] == "apply"
        assert result["change_summary"]["create_count"] == 3
        # Timestamp should be ISO format string
        assert isinstance(result["timestamp"], str)

    def test_record_report(self) -> None:
        """Outcome counts are copied from the execution report."""
        provenance = RunProvenance(mode="apply")
        provenance.record_report(
            report_with(OperationStatus.SUCCEEDED, OperationStatus.FAILED, OperationStatus.SKIPPED, OperationStatus.SKIPPED)
        )

        assert provenance.status == "PartiallyFailed"
        assert provenance.succeeded_count == 1
        assert provenance.failed_count == 1
        assert provenance.skipped_count == 2

    def test_topology_digest(self) -> None:
        assert topology_digest("a") == topology_digest("a")
        assert topology_digest("a") != topology_digest("b")
        assert len(topology_digest("")) == 64


class TestProvenanceLogger:
    """Tests for ProvenanceLogger class."""

    def test_create_provenance_basic(self) -> None:
        """create_provenance creates record with provided values."""
        provenance = ProvenanceLogger().create_provenance("demo-project", "apply")

        assert provenance.project == "demo-project"
        assert provenance.mode == "apply"
        assert provenance.engine_version == ENGINE_VERSION

    @patch.dict("os.environ", {"GIT_COMMIT_SHA": "abc123def456", "GIT_BRANCH": "main"})
    def test_create_provenance_with_git_info(self) -> None:
        """create_provenance includes git info from environment."""
        # Create new logger to pick up env vars
        provenance = ProvenanceLogger().create_provenance("demo-project", "plan")

        assert provenance.git_commit_sha == "abc123def456"
        assert provenance.git_branch == "main"

    def test_log_provenance_success(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs info level for a converged run."""
        provenance = RunProvenance(project="demo-project", mode="apply", status="Converged", succeeded_count=4)

        with caplog.at_level("INFO"):
            ProvenanceLogger().log_provenance(provenance)

        assert "Run provenance" in caplog.text
        assert caplog.records[-1].levelname == "INFO"
        assert caplog.records[-1].project == "demo-project"

    def test_log_provenance_error(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs error level when error present."""
        provenance = RunProvenance(error="Dependency cycle detected", error_type="CycleError")

        with caplog.at_level("ERROR"):
            ProvenanceLogger().log_provenance(provenance)

        assert caplog.records[-1].levelname == "ERROR"

    def test_log_provenance_failed_operations(self, caplog: pytest.LogCaptureFixture) -> None:
        """Failed operations are logged at error level."""
        provenance = RunProvenance(mode="apply", status="PartiallyFailed", failed_count=1)

        with caplog.at_level("INFO"):
            ProvenanceLogger().log_provenance(provenance)

        assert caplog.records[-1].levelname == "ERROR"

    def test_log_provenance_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs warning level when operations were skipped."""
        provenance = RunProvenance(mode="apply", status="Cancelled", skipped_count=3)

        with caplog.at_level("WARNING"):
            ProvenanceLogger().log_provenance(provenance)

        assert caplog.records[-1].levelname == "WARNING"


class TestGetProvenanceLogger:
    """Tests for get_provenance_logger singleton function."""

    def test_returns_logger(self) -> None:
        """get_provenance_logger returns a ProvenanceLogger."""
        assert isinstance(get_provenance_logger(), ProvenanceLogger)

    def test_singleton_pattern(self) -> None:
        """get_provenance_logger returns same instance on multiple calls."""
        assert get_provenance_logger() is get_provenance_logger()
