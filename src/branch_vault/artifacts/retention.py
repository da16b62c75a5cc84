"""
Retention pruning for backup artifacts.

Deletes database dumps and per-date export directories whose
modification age exceeds the retention window. Pruning never fails a
cycle: entries that cannot be removed are logged and reported.
"""

import logging
import shutil
import time
from pathlib import Path

from .models import ArtifactKind, PruneResult, PruneSkippedEntry
from .store import ArtifactStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class RetentionPruner:
    """
    Age-based pruning over an ArtifactStore.

    An entry is eligible when its whole-day age, computed from its
    modification time, is strictly greater than the window. This is the
    ``find -mtime +N`` rule: with a 7 day window an entry 7 days and 23
    hours old is kept, one 8 days old is removed.
    """

    def __init__(self, store: ArtifactStore):
        self._store = store

    @staticmethod
    def age_in_days(path: Path, now: float | None = None) -> int:
        """Whole days since the entry was last modified."""
        now = time.time() if now is None else now
        return int((now - path.stat().st_mtime) // SECONDS_PER_DAY)

    def is_expired(self, path: Path, retention_days: int, now: float | None = None) -> bool:
        return self.age_in_days(path, now) > retention_days

    def prune(
        self,
        retention_days: int,
        dry_run: bool = False,
        now: float | None = None,
    ) -> PruneResult:
        """
        Delete artifacts older than the retention window.

        Args:
            retention_days: Age threshold in days
            dry_run: If True, report eligible entries without deleting
            now: Reference time as a POSIX timestamp (default: current time)

        Returns:
            PruneResult listing deleted and skipped entries
        """
        now = time.time() if now is None else now
        result = PruneResult(retention_days=retention_days, dry_run=dry_run)

        logger.info(
            f"Pruning backups older than {retention_days} days from {self._store.root}"
        )

        for path in self._store.database_artifacts():
            self._prune_entry(path, ArtifactKind.DATABASE, retention_days, dry_run, now, result)

        for path in self._store.export_date_dirs():
            self._prune_entry(path, ArtifactKind.OBJECT_EXPORT, retention_days, dry_run, now, result)

        for entry in result.skipped:
            logger.warning(f"Prune skipped {entry.path}: {entry.reason}")

        return result

    def _prune_entry(
        self,
        path: Path,
        kind: ArtifactKind,
        retention_days: int,
        dry_run: bool,
        now: float,
        result: PruneResult,
    ) -> None:
        try:
            if not self.is_expired(path, retention_days, now):
                return
            size = self._entry_size(path)
            if not dry_run:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
        except FileNotFoundError:
            # Removed by someone else between scan and delete
            return
        except OSError as e:
            result.skipped.append(PruneSkippedEntry(path=path, kind=kind, reason=str(e)))
            return

        result.deleted.append(path)
        result.freed_bytes += size
        logger.debug(f"{'Would delete' if dry_run else 'Deleted'} {kind.value} artifact {path}")

    @staticmethod
    def _entry_size(path: Path) -> int:
        if path.is_dir():
            return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
        return path.stat().st_size
