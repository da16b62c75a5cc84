"""Version control: git plumbing and the environment branch synchronizer."""

from .git import Git, GitResult, authenticated_url, strip_credentials, token_secrets
from .synchronizer import SyncState, VersionControlSynchronizer

__all__ = [
    "Git",
    "GitResult",
    "SyncState",
    "VersionControlSynchronizer",
    "authenticated_url",
    "strip_credentials",
    "token_secrets",
]
