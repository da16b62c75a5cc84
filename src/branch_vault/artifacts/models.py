"""
Pydantic models for backup artifacts and retention results.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class ArtifactKind(Enum):
    """Kinds of artifacts one backup cycle produces."""

    DATABASE = "database"
    OBJECT_EXPORT = "object_export"


class PruneSkippedEntry(BaseModel):
    """An artifact the pruner could not delete."""

    path: Path = Field(description="Entry that was skipped")
    kind: ArtifactKind = Field(description="Artifact kind of the entry")
    reason: str = Field(description="Why the entry was skipped")


class PruneResult(BaseModel):
    """Result of a retention pass."""

    retention_days: int = Field(description="Window the pass applied")
    dry_run: bool = Field(default=False, description="Whether deletion was skipped")
    deleted: list[Path] = Field(default_factory=list, description="Entries removed")
    skipped: list[PruneSkippedEntry] = Field(
        default_factory=list, description="Entries that could not be removed"
    )
    freed_bytes: int = Field(default=0, description="Bytes of storage freed")

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)
