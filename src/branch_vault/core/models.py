"""
Core value types for Branch Vault.

Typed values that flow between components: the environment a run
targets, the snapshot date, and the commit message built from them.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

SNAPSHOT_DATE_FORMAT = "%Y-%m-%d"


class Phase(Enum):
    """Phases of one backup cycle, in execution order."""

    VALIDATE = "validate"
    SYNC = "sync"
    DUMP = "dump"
    EXPORT = "export"
    COMMIT = "commit"
    PUSH = "push"
    PRUNE = "prune"

# git check-ref-format rules that matter for a single branch component
_INVALID_BRANCH = re.compile(r"(^[-/.])|(\.\.)|([\s~^:?*\[\\])|(@\{)|([/.]$)|(\.lock$)|(//)")


@dataclass(frozen=True)
class Environment:
    """Deployment environment, mapped one-to-one onto a git branch name."""

    name: str

    def __post_init__(self) -> None:
        if not self.name or _INVALID_BRANCH.search(self.name):
            raise ValueError(f"Invalid environment branch name: {self.name!r}")

    @property
    def branch(self) -> str:
        """Branch name on both the local clone and the remote."""
        return self.name

    @property
    def refspec(self) -> str:
        """Push refspec that can only ever update this environment's branch."""
        return f"refs/heads/{self.name}:refs/heads/{self.name}"

    def __str__(self) -> str:
        return self.name


def parse_snapshot_date(value: str) -> date:
    """Parse a YYYY-MM-DD snapshot date."""
    return datetime.strptime(value, SNAPSHOT_DATE_FORMAT).date()


def format_snapshot_date(value: date) -> str:
    """Render a snapshot date as the day-key used in artifact names."""
    return value.strftime(SNAPSHOT_DATE_FORMAT)


@dataclass(frozen=True)
class CommitMessage:
    """Commit message for one backup cycle."""

    snapshot_date: date
    timestamp: datetime
    environment: Environment

    TEMPLATE = "Auto backup {date} {time} [CI: {environment}]"

    def render(self) -> str:
        """Render the message text."""
        return self.TEMPLATE.format(
            date=format_snapshot_date(self.snapshot_date),
            time=self.timestamp.strftime("%H:%M:%S"),
            environment=self.environment.name,
        )

    def __str__(self) -> str:
        return self.render()
