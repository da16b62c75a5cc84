"""
Artifact store - filesystem layout for dated backup artifacts.

Layout under the artifact root:

    db_backup_{date}.sql.gz
    objects/{date}/objects_{date}.json
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path

from branch_vault.core.models import format_snapshot_date


class ArtifactStore:
    """
    Naming convention and scanning for backup artifacts.

    The store never decides what to keep; it only knows where artifacts
    live and how to write them without leaving partial files behind.
    """

    DATABASE_PREFIX = "db_backup_"
    DATABASE_SUFFIX = ".sql.gz"
    EXPORT_DIR = "objects"
    EXPORT_PREFIX = "objects_"
    EXPORT_SUFFIX = ".json"
    PARTIAL_SUFFIX = ".partial"

    def __init__(self, root: Path):
        """
        Initialize the store.

        Args:
            root: Artifact root directory
        """
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def export_root(self) -> Path:
        return self._root / self.EXPORT_DIR

    def database_artifact_path(self, snapshot_date: date) -> Path:
        """Path of the database dump for a snapshot date."""
        day = format_snapshot_date(snapshot_date)
        return self._root / f"{self.DATABASE_PREFIX}{day}{self.DATABASE_SUFFIX}"

    def export_dir(self, snapshot_date: date) -> Path:
        """Per-date directory holding the object export."""
        return self.export_root / format_snapshot_date(snapshot_date)

    def export_artifact_path(self, snapshot_date: date) -> Path:
        """Path of the object export for a snapshot date."""
        day = format_snapshot_date(snapshot_date)
        return self.export_dir(snapshot_date) / f"{self.EXPORT_PREFIX}{day}{self.EXPORT_SUFFIX}"

    def ensure_layout(self, snapshot_date: date) -> None:
        """Create the root and the per-date export directory."""
        self.export_dir(snapshot_date).mkdir(parents=True, exist_ok=True)

    def database_artifacts(self) -> list[Path]:
        """All database dumps directly under the root, oldest name first."""
        if not self._root.is_dir():
            return []
        pattern = f"{self.DATABASE_PREFIX}*{self.DATABASE_SUFFIX}"
        return sorted(p for p in self._root.glob(pattern) if p.is_file())

    def export_date_dirs(self) -> list[Path]:
        """Per-date export directories, one level under the export root."""
        if not self.export_root.is_dir():
            return []
        return sorted(p for p in self.export_root.iterdir() if p.is_dir())

    @contextmanager
    def atomic_write(self, target: Path) -> Iterator[Path]:
        """
        Yield a temporary sibling path that replaces target on success.

        On any exception the temporary file is removed and target is left
        as it was.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + self.PARTIAL_SUFFIX)
        try:
            yield partial
            os.replace(partial, target)
        finally:
            if partial.exists():
                partial.unlink()
