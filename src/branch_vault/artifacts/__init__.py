"""
Branch Vault Artifacts Module.

Filesystem layout of dated backup artifacts and their retention.
"""

from .models import ArtifactKind, PruneResult, PruneSkippedEntry
from .retention import RetentionPruner
from .store import ArtifactStore

__all__ = [
    # Models
    "ArtifactKind",
    "PruneResult",
    "PruneSkippedEntry",
    # Store
    "ArtifactStore",
    # Retention
    "RetentionPruner",
]
