"""
Branch Vault Core Module.

Configuration, error taxonomy, typed values and logging shared by every
component.
"""

__all__ = [
    "BackupConfig",
    "DatabaseConfig",
    "ApiConfig",
    "GitConfig",
    "Environment",
    "CommitMessage",
    # Exceptions
    "ErrorKind",
    "BackupError",
    "ConfigurationMissingError",
    "NoCredentialConfiguredError",
    "DumpError",
    "DumpToolFailedError",
    "DumpProducedNoDataError",
    "ExportError",
    "ExportUnauthorizedOrUnreachableError",
    "ExportTimedOutError",
    "ExportMalformedResponseError",
    "VersionControlError",
    "GitCommandFailedError",
    "BranchDivergedError",
    "PushRejectedError",
]

from branch_vault.core.config import ApiConfig, BackupConfig, DatabaseConfig, GitConfig
from branch_vault.core.exceptions import (
    BackupError,
    BranchDivergedError,
    ConfigurationMissingError,
    DumpError,
    DumpProducedNoDataError,
    DumpToolFailedError,
    ErrorKind,
    ExportError,
    ExportMalformedResponseError,
    ExportTimedOutError,
    ExportUnauthorizedOrUnreachableError,
    GitCommandFailedError,
    NoCredentialConfiguredError,
    PushRejectedError,
    VersionControlError,
)
from branch_vault.core.models import CommitMessage, Environment
