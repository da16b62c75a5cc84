"""Tests for orchestrator core module."""

from datetime import date, datetime
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import httpx
import pytest

from branch_vault.artifacts import ArtifactKind, ArtifactStore, PruneResult, PruneSkippedEntry
from branch_vault.core.config import ApiConfig, BackupConfig, DatabaseConfig, GitConfig
from branch_vault.core.exceptions import (
    BranchDivergedError,
    DumpToolFailedError,
    ExportUnauthorizedOrUnreachableError,
    PushRejectedError,
)
from branch_vault.core.models import CommitMessage, Phase
from branch_vault.database import DatabaseDumper
from branch_vault.export import ObjectExporter
from branch_vault.orchestrator import BackupOrchestrator, CycleOutcome, CycleResult, PhaseStatus
from branch_vault.state import CycleCheckpoint, StateManager

from conftest import ScriptTransport, git, requires_git

DAY = date(2024, 3, 5)
NOW = datetime(2024, 3, 5, 2, 0, 0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config(temp_dir: Path) -> BackupConfig:
    return BackupConfig(
        branch="staging",
        repo_dir=temp_dir,
        retention_days=7,
        log_file=None,
        database=DatabaseConfig(password="pw"),
        api=ApiConfig(token="api-token"),
        git=GitConfig(remote_url="https://git.example.com/backups.git", token="git-token"),
    )


@pytest.fixture
def parent() -> MagicMock:
    """Parent mock recording calls across all components in order."""
    parent = MagicMock()
    parent.dumper.dump.return_value = Path("db_backup_2024-03-05.sql.gz")
    parent.exporter.export.return_value = Path("objects_2024-03-05.json")
    parent.synchronizer.stage_and_commit.return_value = "abc123"
    parent.synchronizer.has_unpushed_commits.return_value = False
    parent.pruner.prune.return_value = PruneResult(retention_days=7)
    return parent


@pytest.fixture
def state(temp_dir: Path) -> StateManager:
    return StateManager(temp_dir / "state.json")


@pytest.fixture
def orchestrator(config: BackupConfig, parent: MagicMock, state: StateManager) -> BackupOrchestrator:
    return BackupOrchestrator(
        config,
        store=ArtifactStore(config.resolved_artifact_root),
        dumper=parent.dumper,
        exporter=parent.exporter,
        synchronizer=parent.synchronizer,
        pruner=parent.pruner,
        state=state,
        clock=lambda: NOW,
    )


def called(parent: MagicMock) -> list[str]:
    """Component methods invoked, in order, ignoring result inspection."""
    return [name for name, _, _ in parent.mock_calls if "." in name and "__" not in name]


def statuses(result: CycleResult) -> dict[Phase, PhaseStatus]:
    return {p.phase: p.status for p in result.phases}


# =============================================================================
# Phase ordering
# =============================================================================


class TestCycleSuccess:
    """Tests for cycles that complete."""

    def test_phases_run_in_order(self, orchestrator: BackupOrchestrator, parent: MagicMock) -> None:
        result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.COMPLETED
        assert result.exit_code == 0
        assert result.is_success()
        assert called(parent) == [
            "synchronizer.sync_branch",
            "dumper.dump",
            "exporter.export",
            "synchronizer.stage_and_commit",
            "synchronizer.push",
            "pruner.prune",
        ]
        assert [p.phase for p in result.phases] == list(Phase)
        assert all(p.status is PhaseStatus.COMPLETED for p in result.phases)
        assert result.commit_sha == "abc123"

    def test_commit_message(self, orchestrator: BackupOrchestrator, parent: MagicMock) -> None:
        orchestrator.run(DAY)

        message = parent.synchronizer.stage_and_commit.call_args[0][0]
        assert isinstance(message, CommitMessage)
        assert str(message) == "Auto backup 2024-03-05 02:00:00 [CI: staging]"

    def test_snapshot_date_defaults_to_clock(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        result = orchestrator.run()

        assert result.snapshot_date == DAY
        parent.dumper.dump.assert_called_once_with(DAY)
        parent.exporter.export.assert_called_once_with(DAY)

    def test_export_directory_prepared(
        self, orchestrator: BackupOrchestrator, config: BackupConfig
    ) -> None:
        orchestrator.run(DAY)
        assert (config.resolved_artifact_root / "objects" / "2024-03-05").is_dir()

    def test_retention_override(self, orchestrator: BackupOrchestrator, parent: MagicMock) -> None:
        orchestrator.run(DAY, retention_days=3)
        parent.pruner.prune.assert_called_once_with(3)

    def test_retention_from_config(self, orchestrator: BackupOrchestrator, parent: MagicMock) -> None:
        orchestrator.run(DAY)
        parent.pruner.prune.assert_called_once_with(7)

    def test_checkpoint_records_push(
        self, orchestrator: BackupOrchestrator, state: StateManager
    ) -> None:
        orchestrator.run(DAY)

        checkpoint = state.get("staging")
        assert checkpoint.last_completed_phase is Phase.PUSH
        assert checkpoint.failed_phase is None
        assert checkpoint.snapshot_date == "2024-03-05"

    def test_to_dict(self, orchestrator: BackupOrchestrator) -> None:
        data = orchestrator.run(DAY).to_dict()

        assert data["outcome"] == "completed"
        assert data["exit_code"] == 0
        assert data["environment"] == "staging"
        assert data["snapshot_date"] == "2024-03-05"
        assert [p["phase"] for p in data["phases"]] == [p.value for p in Phase]


class TestNoOp:
    """Tests for cycles where nothing changed."""

    def test_unchanged_artifacts_skip_push(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        parent.synchronizer.stage_and_commit.return_value = None

        result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.NO_OP
        assert result.exit_code == 0
        assert result.commit_sha is None
        parent.synchronizer.push.assert_not_called()
        parent.pruner.prune.assert_called_once()
        assert statuses(result)[Phase.PUSH] is PhaseStatus.SKIPPED

    def test_unpushed_commits_still_pushed(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        """A commit stranded by an earlier failed push goes out even on a no-op."""
        parent.synchronizer.stage_and_commit.return_value = None
        parent.synchronizer.has_unpushed_commits.return_value = True

        result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.COMPLETED
        parent.synchronizer.push.assert_called_once()


class TestFatalFailures:
    """Tests for failures that abort the cycle."""

    def test_missing_configuration(
        self, config: BackupConfig, parent: MagicMock, state: StateManager
    ) -> None:
        incomplete = config.model_copy(update={"git": GitConfig()})
        orchestrator = BackupOrchestrator(
            incomplete,
            dumper=parent.dumper,
            exporter=parent.exporter,
            synchronizer=parent.synchronizer,
            pruner=parent.pruner,
            state=state,
        )

        result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.FAILED
        assert result.exit_code == 1
        assert result.failed_phase is Phase.VALIDATE
        assert result.error_kind == "ConfigurationMissing"
        assert called(parent) == []
        assert not state.state_file.exists()

    def test_dump_failure_stops_cycle(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, state: StateManager
    ) -> None:
        """No export, commit, push or prune after a failed dump."""
        parent.dumper.dump.side_effect = DumpToolFailedError("pg_dump failed", exit_code=1)

        result = orchestrator.run(DAY)

        assert result.exit_code == 1
        assert result.failed_phase is Phase.DUMP
        assert result.error_kind == "DumpToolFailed"
        parent.exporter.export.assert_not_called()
        parent.synchronizer.stage_and_commit.assert_not_called()
        parent.synchronizer.push.assert_not_called()
        parent.pruner.prune.assert_not_called()

        phases = statuses(result)
        assert phases[Phase.DUMP] is PhaseStatus.FAILED
        for phase in (Phase.EXPORT, Phase.COMMIT, Phase.PUSH, Phase.PRUNE):
            assert phases[phase] is PhaseStatus.SKIPPED

        checkpoint = state.get("staging")
        assert checkpoint.last_completed_phase is Phase.SYNC
        assert checkpoint.failed_phase is Phase.DUMP
        assert checkpoint.error_kind == "DumpToolFailed"

    def test_export_failure_stops_commit(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        parent.exporter.export.side_effect = ExportUnauthorizedOrUnreachableError("401", status_code=401)

        result = orchestrator.run(DAY)

        assert result.failed_phase is Phase.EXPORT
        assert result.error_kind == "ExportUnauthorizedOrUnreachable"
        parent.synchronizer.stage_and_commit.assert_not_called()
        parent.pruner.prune.assert_not_called()

    def test_diverged_branch_stops_dump(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        parent.synchronizer.sync_branch.side_effect = BranchDivergedError("diverged", branch="staging")

        result = orchestrator.run(DAY)

        assert result.failed_phase is Phase.SYNC
        assert result.error_kind == "BranchDivergedRequiresManualMerge"
        parent.dumper.dump.assert_not_called()

    def test_push_failure_keeps_commit_for_resume(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, state: StateManager
    ) -> None:
        parent.synchronizer.push.side_effect = PushRejectedError("rejected", branch="staging")

        result = orchestrator.run(DAY)

        assert result.exit_code == 1
        assert result.failed_phase is Phase.PUSH
        parent.pruner.prune.assert_not_called()

        checkpoint = state.get("staging")
        assert checkpoint.awaiting_push is True
        assert checkpoint.commit_sha == "abc123"

    def test_unexpected_error_is_fatal(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        parent.exporter.export.side_effect = RuntimeError("boom")

        result = orchestrator.run(DAY)

        assert result.exit_code == 1
        assert result.failed_phase is Phase.EXPORT
        assert result.error_kind is None
        assert isinstance(result.error, RuntimeError)


class TestPruneFailures:
    """Pruning never changes the cycle outcome."""

    def test_prune_error_ignored(self, orchestrator: BackupOrchestrator, parent: MagicMock) -> None:
        parent.pruner.prune.side_effect = PermissionError("read-only")

        result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.COMPLETED
        assert result.exit_code == 0
        assert result.prune_result is None
        assert result.failed_phase is None

    def test_skipped_entries_keep_success(
        self, orchestrator: BackupOrchestrator, parent: MagicMock
    ) -> None:
        parent.pruner.prune.return_value = PruneResult(
            retention_days=7,
            skipped=[
                PruneSkippedEntry(path=Path("db_backup_2024-01-01.sql.gz"), kind=ArtifactKind.DATABASE, reason="EACCES")
            ],
        )

        result = orchestrator.run(DAY)

        assert result.exit_code == 0
        assert len(result.prune_result.skipped) == 1


class TestResume:
    """Tests for resuming a cycle whose push failed."""

    @pytest.fixture
    def pending(self, state: StateManager) -> CycleCheckpoint:
        checkpoint = CycleCheckpoint(
            environment="staging",
            snapshot_date="2024-03-05",
            last_completed_phase=Phase.COMMIT,
            failed_phase=Phase.PUSH,
            error_kind="PushRejected",
            commit_sha="def456",
        )
        state.record(checkpoint)
        return checkpoint

    def test_resume_pushes_without_dumping(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, pending: CycleCheckpoint
    ) -> None:
        parent.synchronizer.has_unpushed_commits.return_value = True

        result = orchestrator.run(DAY)

        assert result.resumed is True
        assert result.outcome is CycleOutcome.COMPLETED
        assert result.commit_sha == "def456"
        parent.dumper.dump.assert_not_called()
        parent.exporter.export.assert_not_called()
        parent.synchronizer.push.assert_called_once()

        phases = statuses(result)
        for phase in (Phase.DUMP, Phase.EXPORT, Phase.COMMIT):
            assert phases[phase] is PhaseStatus.SKIPPED

    def test_no_resume_when_already_pushed(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, pending: CycleCheckpoint
    ) -> None:
        result = orchestrator.run(DAY)

        assert result.resumed is False
        parent.dumper.dump.assert_called_once()

    def test_no_resume_for_other_date(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, pending: CycleCheckpoint
    ) -> None:
        parent.synchronizer.has_unpushed_commits.return_value = True

        result = orchestrator.run(date(2024, 3, 6))

        assert result.resumed is False
        parent.dumper.dump.assert_called_once()

    def test_resume_disabled(
        self, orchestrator: BackupOrchestrator, parent: MagicMock, pending: CycleCheckpoint
    ) -> None:
        parent.synchronizer.has_unpushed_commits.return_value = True

        result = orchestrator.run(DAY, resume=False)

        assert result.resumed is False
        parent.dumper.dump.assert_called_once()


# =============================================================================
# End to end against real git
# =============================================================================


@requires_git
class TestEndToEnd:
    """Full cycles with a scripted dump, a mocked API and a bare remote."""

    @staticmethod
    def build(
        config: BackupConfig, sql: str = "SELECT 1;\n", records: list | None = None, exit_code: int = 0
    ) -> BackupOrchestrator:
        store = ArtifactStore(config.resolved_artifact_root)
        body = records if records is not None else [{"id": 1, "name": "flow"}]
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
        return BackupOrchestrator(
            config,
            store=store,
            dumper=DatabaseDumper(
                config.database, store, ScriptTransport(config.database, output=sql, exit_code=exit_code)
            ),
            exporter=ObjectExporter(config.api, store, client=client),
            clock=lambda: NOW,
        )

    def test_second_identical_run_is_noop(
        self, make_config: Callable[..., BackupConfig], bare_remote: Path
    ) -> None:
        config = make_config("staging")

        with self.build(config) as orchestrator:
            first = orchestrator.run(DAY)
        with self.build(config) as orchestrator:
            second = orchestrator.run(DAY)

        assert first.outcome is CycleOutcome.COMPLETED
        assert second.outcome is CycleOutcome.NO_OP
        assert second.exit_code == 0
        assert git(bare_remote, "rev-list", "--count", "refs/heads/staging") == "1"
        assert git(bare_remote, "rev-parse", "refs/heads/staging") == first.commit_sha

    def test_changed_data_commits_again(
        self, make_config: Callable[..., BackupConfig], bare_remote: Path
    ) -> None:
        config = make_config("staging")

        with self.build(config, sql="SELECT 1;\n") as orchestrator:
            orchestrator.run(DAY)
        with self.build(config, sql="SELECT 2;\n") as orchestrator:
            result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.COMPLETED
        assert git(bare_remote, "rev-list", "--count", "refs/heads/staging") == "2"
        tracked = git(config.repo_dir, "ls-files").splitlines()
        assert tracked == [
            "backups/db_backup_2024-03-05.sql.gz",
            "backups/objects/2024-03-05/objects_2024-03-05.json",
        ]

    def test_empty_export_committed(self, make_config: Callable[..., BackupConfig], bare_remote: Path) -> None:
        """An empty object collection is still a published artifact."""
        config = make_config("staging")

        with self.build(config, records=[]) as orchestrator:
            result = orchestrator.run(DAY)

        assert result.outcome is CycleOutcome.COMPLETED
        blob = "refs/heads/staging:backups/objects/2024-03-05/objects_2024-03-05.json"
        assert git(bare_remote, "show", blob) == "[]"
        assert git(bare_remote, "cat-file", "-s", blob) == "3"

    def test_failed_dump_leaves_remote_untouched(
        self, make_config: Callable[..., BackupConfig], bare_remote: Path
    ) -> None:
        config = make_config("staging")

        with self.build(config) as orchestrator:
            first = orchestrator.run(DAY)
        with self.build(config, sql="", exit_code=1) as orchestrator:
            failed = orchestrator.run(DAY)

        assert failed.exit_code == 1
        assert failed.error_kind == "DumpToolFailed"
        assert git(bare_remote, "rev-parse", "refs/heads/staging") == first.commit_sha
        assert git(config.repo_dir, "status", "--porcelain") == ""

    def test_environments_isolated(
        self, make_config: Callable[..., BackupConfig], bare_remote: Path
    ) -> None:
        staging = make_config("staging")
        with self.build(staging, sql="staging\n") as orchestrator:
            staging_result = orchestrator.run(DAY)

        production = make_config("production")
        with self.build(production, sql="production\n") as orchestrator:
            production_result = orchestrator.run(DAY)

        assert git(bare_remote, "rev-parse", "refs/heads/staging") == staging_result.commit_sha
        assert git(bare_remote, "rev-parse", "refs/heads/production") == production_result.commit_sha
        assert "[CI: production]" in git(bare_remote, "log", "-1", "--format=%s", "refs/heads/production")
