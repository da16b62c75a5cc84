"""
State Manager - per-environment cycle checkpoints.

Records the last phase each environment's cycle completed, so a run
that committed but failed to push can resume at the push on the next
invocation instead of dumping again.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from branch_vault.core.models import Phase

logger = logging.getLogger(__name__)


class CycleCheckpoint(BaseModel):
    """Progress of the most recent cycle for one environment."""

    environment: str
    snapshot_date: str
    last_completed_phase: Phase | None = None
    failed_phase: Phase | None = None
    error_kind: str | None = None
    commit_sha: str | None = None
    updated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def awaiting_push(self) -> bool:
        """Committed locally, push not yet confirmed."""
        return self.last_completed_phase is Phase.COMMIT and self.failed_phase is Phase.PUSH

    def can_resume_push(self, environment: str, snapshot_date: str) -> bool:
        return (
            self.awaiting_push
            and self.environment == environment
            and self.snapshot_date == snapshot_date
        )


class StateManager:
    """
    Checkpoint storage in a single JSON file.

    Layout: ``{"checkpoints": {"<environment>": {...}}}``. A missing or
    unreadable file means no checkpoints.
    """

    def __init__(self, state_file: Path):
        """Initialize state manager with its checkpoint file."""
        self._state_file = Path(state_file)

    @property
    def state_file(self) -> Path:
        return self._state_file

    def _load(self) -> dict[str, dict]:
        if not self._state_file.exists():
            return {}
        try:
            data = json.loads(self._state_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable state file {self._state_file}: {e}")
            return {}
        checkpoints = data.get("checkpoints", {}) if isinstance(data, dict) else {}
        return checkpoints if isinstance(checkpoints, dict) else {}

    def _save(self, checkpoints: dict[str, dict]) -> None:
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        partial = self._state_file.with_name(self._state_file.name + ".partial")
        partial.write_text(json.dumps({"checkpoints": checkpoints}, indent=2), encoding="utf-8")
        os.replace(partial, self._state_file)

    def get(self, environment: str) -> CycleCheckpoint | None:
        """Checkpoint for an environment, if one is recorded."""
        raw = self._load().get(environment)
        if raw is None:
            return None
        try:
            return CycleCheckpoint(**raw)
        except (ValidationError, TypeError):
            logger.warning(f"Ignoring malformed checkpoint for {environment}")
            return None

    def record(self, checkpoint: CycleCheckpoint) -> None:
        """Store or replace an environment's checkpoint."""
        checkpoints = self._load()
        checkpoints[checkpoint.environment] = json.loads(checkpoint.model_dump_json())
        self._save(checkpoints)
