"""Backup cycle orchestration."""

from .core import BackupOrchestrator, CycleOutcome, CycleResult, PhaseResult, PhaseStatus

__all__ = [
    "BackupOrchestrator",
    "CycleOutcome",
    "CycleResult",
    "PhaseResult",
    "PhaseStatus",
]
