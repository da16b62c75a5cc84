"""
Branch Vault Exception Hierarchy.

Every failure a backup cycle can surface is a subclass of BackupError and
carries an ErrorKind. Fatal kinds abort the cycle; PruneSkippedEntry is
recorded and logged only.
"""

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Classification of backup cycle failures."""

    CONFIGURATION_MISSING = "ConfigurationMissing"
    NO_CREDENTIAL_CONFIGURED = "NoCredentialConfigured"
    DUMP_TOOL_FAILED = "DumpToolFailed"
    DUMP_PRODUCED_NO_DATA = "DumpProducedNoData"
    EXPORT_UNAUTHORIZED_OR_UNREACHABLE = "ExportUnauthorizedOrUnreachable"
    EXPORT_TIMED_OUT = "ExportTimedOut"
    EXPORT_MALFORMED_RESPONSE = "ExportMalformedResponse"
    BRANCH_DIVERGED = "BranchDivergedRequiresManualMerge"
    PUSH_REJECTED = "PushRejected"
    GIT_COMMAND_FAILED = "GitCommandFailed"
    PRUNE_SKIPPED_ENTRY = "PruneSkippedEntry"

    @property
    def fatal(self) -> bool:
        """Whether this kind aborts the remaining cycle."""
        return self is not ErrorKind.PRUNE_SKIPPED_ENTRY


class BackupError(Exception):
    """
    Base exception for all Branch Vault errors.

    All custom exceptions inherit from this class, allowing the
    orchestrator to catch one type and report a typed failure.
    """

    kind: ErrorKind = ErrorKind.CONFIGURATION_MISSING

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a BackupError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def fatal(self) -> bool:
        """Whether this error aborts the cycle."""
        return self.kind.fatal

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationMissingError(BackupError):
    """
    Required configuration is absent.

    Raised by the up-front validation gate, listing every missing
    setting at once rather than failing on the first.
    """

    kind = ErrorKind.CONFIGURATION_MISSING

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if missing:
            details["missing"] = missing

        super().__init__(message, details=details)
        self.missing = missing or []


class NoCredentialConfiguredError(ConfigurationMissingError):
    """Neither a bearer token nor basic-auth credentials are set for the API."""

    kind = ErrorKind.NO_CREDENTIAL_CONFIGURED


class DumpError(BackupError):
    """
    Errors while producing the database artifact.

    Any dump error is fatal: the cycle must not export, commit or
    prune without a complete database artifact.
    """

    def __init__(
        self,
        message: str,
        *,
        artifact_path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if artifact_path:
            details["artifact_path"] = artifact_path

        super().__init__(message, details=details)
        self.artifact_path = artifact_path


class DumpToolFailedError(DumpError):
    """The dump tool exited non-zero, timed out, or could not be started."""

    kind = ErrorKind.DUMP_TOOL_FAILED

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str | None = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {}) or {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        kwargs["details"] = details

        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stderr = stderr or ""


class DumpProducedNoDataError(DumpError):
    """The dump tool reported success but wrote nothing."""

    kind = ErrorKind.DUMP_PRODUCED_NO_DATA


class ExportError(BackupError):
    """Errors while retrieving the object export from the API."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if url:
            details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(message, details=details)
        self.url = url
        self.status_code = status_code


class ExportUnauthorizedOrUnreachableError(ExportError):
    """The API answered non-2xx or could not be reached."""

    kind = ErrorKind.EXPORT_UNAUTHORIZED_OR_UNREACHABLE


class ExportTimedOutError(ExportError):
    """The export request exceeded its timeout."""

    kind = ErrorKind.EXPORT_TIMED_OUT


class ExportMalformedResponseError(ExportError):
    """The API answered 2xx with a body that is not a collection of records."""

    kind = ErrorKind.EXPORT_MALFORMED_RESPONSE


class VersionControlError(BackupError):
    """
    Errors in git operations.

    Raised when synchronizing, committing or pushing the
    environment branch fails.
    """

    kind = ErrorKind.GIT_COMMAND_FAILED

    def __init__(
        self,
        message: str,
        *,
        branch: str | None = None,
        command: str | None = None,
        stderr: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if branch:
            details["branch"] = branch
        if command:
            details["command"] = command

        super().__init__(message, details=details)
        self.branch = branch
        self.command = command
        self.stderr = stderr or ""


class GitCommandFailedError(VersionControlError):
    """A git command failed outside the diverge and push cases."""

    kind = ErrorKind.GIT_COMMAND_FAILED


class BranchDivergedError(VersionControlError):
    """The local branch cannot be fast-forwarded; a manual merge is required."""

    kind = ErrorKind.BRANCH_DIVERGED


class PushRejectedError(VersionControlError):
    """The remote refused the push or could not be reached."""

    kind = ErrorKind.PUSH_REJECTED
