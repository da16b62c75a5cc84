"""
Orchestrator Core - one backup cycle.

Runs the phases strictly in order:

    validate -> sync -> dump -> export -> commit -> push -> prune

A failure before prune aborts the remaining phases. Prune failures are
logged and never change the outcome.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from branch_vault.artifacts.models import PruneResult
from branch_vault.artifacts.retention import RetentionPruner
from branch_vault.artifacts.store import ArtifactStore
from branch_vault.core.config import BackupConfig
from branch_vault.core.exceptions import BackupError
from branch_vault.core.logging import log_success
from branch_vault.core.models import CommitMessage, Phase, format_snapshot_date
from branch_vault.database.dumper import DatabaseDumper
from branch_vault.export.client import ObjectExporter
from branch_vault.state.manager import CycleCheckpoint, StateManager
from branch_vault.vcs.synchronizer import VersionControlSynchronizer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CycleOutcome(Enum):
    """How a cycle ended."""

    COMPLETED = "completed"
    NO_OP = "no_op"
    FAILED = "failed"


class PhaseStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseResult:
    """Result of a single phase."""

    phase: Phase
    status: PhaseStatus
    execution_time_ms: float | None = None
    error_message: str | None = None
    error_type: str | None = None


@dataclass
class CycleResult:
    """Result of one backup cycle."""

    environment: str
    snapshot_date: date
    outcome: CycleOutcome = CycleOutcome.FAILED
    phases: list[PhaseResult] = field(default_factory=list)
    database_artifact: Path | None = None
    export_artifact: Path | None = None
    commit_sha: str | None = None
    resumed: bool = False
    prune_result: PruneResult | None = None
    failed_phase: Phase | None = None
    error: Exception | None = None

    @property
    def exit_code(self) -> int:
        """Process exit status: 0 on success or no-op, 1 on any fatal failure."""
        return 1 if self.outcome is CycleOutcome.FAILED else 0

    @property
    def error_kind(self) -> str | None:
        if isinstance(self.error, BackupError):
            return self.error.kind.value
        return None

    def is_success(self) -> bool:
        return self.outcome is not CycleOutcome.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "snapshot_date": format_snapshot_date(self.snapshot_date),
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "commit_sha": self.commit_sha,
            "resumed": self.resumed,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "error_kind": self.error_kind,
            "error": str(self.error) if self.error else None,
            "phases": [
                {
                    "phase": p.phase.value,
                    "status": p.status.value,
                    "execution_time_ms": p.execution_time_ms,
                    "error": p.error_message,
                }
                for p in self.phases
            ],
        }


class BackupOrchestrator:
    """
    Sequences one backup cycle for a single environment.

    Components default to ones built from the configuration; tests and
    callers may inject their own.
    """

    def __init__(
        self,
        config: BackupConfig,
        store: ArtifactStore | None = None,
        dumper: DatabaseDumper | None = None,
        exporter: ObjectExporter | None = None,
        synchronizer: VersionControlSynchronizer | None = None,
        pruner: RetentionPruner | None = None,
        state: StateManager | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize orchestrator with configuration and components."""
        self._config = config
        self._environment = config.environment
        self._store = store or ArtifactStore(config.resolved_artifact_root)
        self._dumper = dumper or DatabaseDumper(config.database, self._store)
        self._exporter = exporter or ObjectExporter(config.api, self._store)
        self._synchronizer = synchronizer or VersionControlSynchronizer(
            config.git,
            self._environment,
            work_tree=config.repo_dir,
            artifact_root=self._store.root,
        )
        self._pruner = pruner or RetentionPruner(self._store)
        self._state = state or StateManager(config.resolved_state_file)
        self._clock = clock

    def _run_phase(self, result: CycleResult, phase: Phase, action: Callable[[], T]) -> T:
        logger.info(f"[{phase.value}] started")
        start = time.monotonic()
        try:
            value = action()
        except Exception as e:
            elapsed = (time.monotonic() - start) * 1000
            result.phases.append(
                PhaseResult(
                    phase=phase,
                    status=PhaseStatus.FAILED,
                    execution_time_ms=elapsed,
                    error_message=str(e),
                    error_type=type(e).__name__,
                )
            )
            result.failed_phase = phase
            raise
        elapsed = (time.monotonic() - start) * 1000
        result.phases.append(
            PhaseResult(phase=phase, status=PhaseStatus.COMPLETED, execution_time_ms=elapsed)
        )
        logger.debug(f"[{phase.value}] completed in {elapsed:.0f}ms")
        return value

    @staticmethod
    def _skip(result: CycleResult, *phases: Phase) -> None:
        for phase in phases:
            result.phases.append(PhaseResult(phase=phase, status=PhaseStatus.SKIPPED))

    def _checkpoint(self, result: CycleResult, last_completed: Phase | None) -> None:
        if last_completed is None:
            # the branch was never synced; the work tree may not exist
            return
        checkpoint = CycleCheckpoint(
            environment=result.environment,
            snapshot_date=format_snapshot_date(result.snapshot_date),
            last_completed_phase=last_completed,
            failed_phase=result.failed_phase,
            error_kind=result.error_kind,
            commit_sha=result.commit_sha,
        )
        try:
            self._state.record(checkpoint)
        except OSError as e:
            logger.warning(f"Cannot record checkpoint in {self._state.state_file}: {e}")

    def run(
        self,
        snapshot_date: date | None = None,
        retention_days: int | None = None,
        resume: bool = True,
    ) -> CycleResult:
        """
        Execute one backup cycle.

        Args:
            snapshot_date: Day-key for the artifacts (default: today)
            retention_days: Retention window (default: from configuration)
            resume: Skip dump and export when the previous run for this
                environment and date committed but failed to push

        Returns:
            CycleResult; fatal errors are captured in it, not raised
        """
        snapshot_date = snapshot_date or self._clock().date()
        retention_days = self._config.retention_days if retention_days is None else retention_days
        day = format_snapshot_date(snapshot_date)
        env = self._environment.name

        result = CycleResult(environment=env, snapshot_date=snapshot_date)
        last_completed: Phase | None = None
        logger.info(f"Starting backup cycle {day} on branch {env}")

        try:
            self._run_phase(result, Phase.VALIDATE, self._config.validate_required)
            self._run_phase(result, Phase.SYNC, self._synchronizer.sync_branch)
            last_completed = Phase.SYNC

            previous = self._state.get(env) if resume else None
            if (
                previous is not None
                and previous.can_resume_push(env, day)
                and self._synchronizer.has_unpushed_commits()
            ):
                logger.info(f"Resuming cycle {day}: commit {previous.commit_sha} awaits push")
                result.resumed = True
                result.commit_sha = previous.commit_sha
                self._skip(result, Phase.DUMP, Phase.EXPORT, Phase.COMMIT)
                last_completed = Phase.COMMIT
            else:
                def dump() -> Path:
                    self._store.ensure_layout(snapshot_date)
                    return self._dumper.dump(snapshot_date)

                result.database_artifact = self._run_phase(result, Phase.DUMP, dump)
                last_completed = Phase.DUMP
                result.export_artifact = self._run_phase(
                    result, Phase.EXPORT, lambda: self._exporter.export(snapshot_date)
                )
                last_completed = Phase.EXPORT

                message = CommitMessage(
                    snapshot_date=snapshot_date,
                    timestamp=self._clock(),
                    environment=self._environment,
                )
                result.commit_sha = self._run_phase(
                    result, Phase.COMMIT, lambda: self._synchronizer.stage_and_commit(message)
                )
                last_completed = Phase.COMMIT

            if result.resumed or result.commit_sha or self._synchronizer.has_unpushed_commits():
                self._run_phase(result, Phase.PUSH, self._synchronizer.push)
                last_completed = Phase.PUSH
                result.outcome = CycleOutcome.COMPLETED
            else:
                self._skip(result, Phase.PUSH)
                result.outcome = CycleOutcome.NO_OP

        except Exception as e:
            result.outcome = CycleOutcome.FAILED
            result.error = e
            if result.failed_phase is None:
                result.failed_phase = self._next_phase(last_completed)
            if isinstance(e, BackupError):
                logger.error(f"[{result.failed_phase.value}] {e.kind.value}: {e}")
            else:
                logger.exception(f"[{result.failed_phase.value}] Unexpected error: {e}")
            self._skip(result, *self._remaining_phases(result.failed_phase))
            self._checkpoint(result, last_completed)
            return result

        self._checkpoint(result, last_completed)
        result.prune_result = self._prune(result, retention_days)

        if result.outcome is CycleOutcome.NO_OP:
            logger.info(f"Backup cycle completed for {day}: no changes")
        else:
            log_success(logger, f"Backup cycle completed for {day}")
        return result

    def _prune(self, result: CycleResult, retention_days: int) -> PruneResult | None:
        try:
            prune_result = self._run_phase(
                result, Phase.PRUNE, lambda: self._pruner.prune(retention_days)
            )
        except OSError as e:
            logger.warning(f"[prune] skipped: {e}")
            result.failed_phase = None
            return None

        log_success(
            logger,
            f"Pruning completed: {prune_result.deleted_count} removed, "
            f"{len(prune_result.skipped)} skipped",
        )
        return prune_result

    @staticmethod
    def _next_phase(last_completed: Phase | None) -> Phase:
        order = list(Phase)
        if last_completed is None:
            return Phase.VALIDATE
        return order[min(order.index(last_completed) + 1, len(order) - 1)]

    @staticmethod
    def _remaining_phases(failed: Phase) -> list[Phase]:
        order = list(Phase)
        return order[order.index(failed) + 1 :]

    def close(self) -> None:
        """Release the exporter's HTTP client."""
        self._exporter.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
