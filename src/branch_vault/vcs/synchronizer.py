"""
Version-Control Synchronizer - environment branch lifecycle for one cycle.

State machine over one invocation:

    UNINITIALIZED -> BRANCH_SYNCED -> STAGED -> COMMITTED     -> PUSHED
                                             -> NO_OP_SKIPPED -> PUSHED

The synchronizer only ever touches the branch named after the
environment. It fast-forwards, never merges, and never force-pushes.
"""

import logging
from enum import Enum
from pathlib import Path

from branch_vault.core.config import GitConfig
from branch_vault.core.exceptions import (
    BranchDivergedError,
    GitCommandFailedError,
    PushRejectedError,
)
from branch_vault.core.logging import log_success
from branch_vault.core.models import CommitMessage, Environment

from .git import Git, authenticated_url, strip_credentials, token_secrets

logger = logging.getLogger(__name__)

PARTIAL_EXCLUDE = ":(exclude)*.partial"


class SyncState(Enum):
    """Position of the synchronizer within one cycle."""

    UNINITIALIZED = "uninitialized"
    BRANCH_SYNCED = "branch_synced"
    STAGED = "staged"
    COMMITTED = "committed"
    NO_OP_SKIPPED = "no_op_skipped"
    PUSHED = "pushed"


class VersionControlSynchronizer:
    """
    Keeps the environment branch in step with its remote.

    Responsibilities:
    - Create or fast-forward the local environment branch
    - Commit the artifact tree only when it changed
    - Push to the identically named remote branch with an embedded token
    """

    def __init__(
        self,
        config: GitConfig,
        environment: Environment,
        work_tree: Path,
        artifact_root: Path,
        git: Git | None = None,
    ):
        """
        Initialize the synchronizer.

        Args:
            config: Remote URL, token and bot identity
            environment: Environment whose branch is synchronized
            work_tree: Root of the git working tree
            artifact_root: Artifact directory inside the work tree
            git: Git runner (default: one bound to work_tree)
        """
        self._config = config
        self._environment = environment
        self._work_tree = Path(work_tree)
        self._artifact_root = Path(artifact_root)
        token = config.token.get_secret_value() if config.token else None
        self._token = token
        self._git = git or Git(self._work_tree, secrets=token_secrets(token))
        self._state = SyncState.UNINITIALIZED
        self._remote_branch_exists = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def branch(self) -> str:
        return self._environment.branch

    @property
    def remote(self) -> str:
        return self._config.remote_name

    @property
    def remote_tracking_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    def _require_state(self, operation: str, *allowed: SyncState) -> None:
        if self._state not in allowed:
            raise GitCommandFailedError(
                f"Cannot {operation} in state {self._state.value}",
                branch=self.branch,
                details={"allowed": [s.value for s in allowed]},
            )

    def _artifact_pathspec(self) -> str:
        root = self._artifact_root.resolve()
        try:
            relative = root.relative_to(self._work_tree.resolve())
        except ValueError as e:
            raise GitCommandFailedError(
                f"Artifact root {root} is outside the work tree {self._work_tree}",
                branch=self.branch,
            ) from e
        return relative.as_posix() or "."

    def ensure_remote(self) -> None:
        """
        Point the remote at the authenticated URL.

        The URL is always rebuilt from the canonical URL and the current
        token, so a rotated token replaces the old one.
        """
        if not self._config.remote_url:
            raise GitCommandFailedError("No remote URL configured", branch=self.branch)

        desired = authenticated_url(self._config.remote_url, self._token)
        current = self._git.run("remote", "get-url", self.remote, check=False)

        if not current.ok:
            self._git.run("remote", "add", self.remote, desired, branch=self.branch)
            logger.info(f"Added remote {self.remote}: {strip_credentials(desired)}")
        elif current.stdout.strip() != desired:
            self._git.run("remote", "set-url", self.remote, desired, branch=self.branch)
            logger.info(f"Updated remote {self.remote}: {strip_credentials(desired)}")

    def remote_branch_exists(self) -> bool:
        """Whether the environment branch exists on the remote."""
        result = self._git.run(
            "ls-remote",
            "--exit-code",
            "--heads",
            self.remote,
            f"refs/heads/{self.branch}",
            check=False,
        )
        if result.returncode == 0:
            return True
        if result.returncode == 2:
            return False
        raise GitCommandFailedError(
            f"Cannot query remote {self.remote} for branch {self.branch}",
            branch=self.branch,
            command="git ls-remote",
            stderr=result.stderr,
        )

    def sync_branch(self) -> SyncState:
        """
        Check out the environment branch, creating or fast-forwarding it.

        Raises:
            BranchDivergedError: If the local branch cannot fast-forward
            GitCommandFailedError: For any other git failure
        """
        self._require_state("sync branch", SyncState.UNINITIALIZED)
        self.ensure_remote()

        local_exists = self._git.ref_exists(f"refs/heads/{self.branch}")
        self._remote_branch_exists = self.remote_branch_exists()

        if not self._remote_branch_exists:
            if local_exists:
                self._checkout(self.branch)
                logger.info(f"Using local branch {self.branch} (not yet on remote)")
            elif not self._git.ref_exists("HEAD"):
                # Unborn repository: point HEAD at the branch, first commit creates it
                self._git.run("symbolic-ref", "HEAD", f"refs/heads/{self.branch}", branch=self.branch)
                logger.info(f"Created new environment branch: {self.branch}")
            else:
                self._checkout("-b", self.branch)
                logger.info(f"Created new environment branch: {self.branch}")
        else:
            self._git.run(
                "fetch",
                self.remote,
                f"+refs/heads/{self.branch}:{self.remote_tracking_ref}",
                branch=self.branch,
            )
            if local_exists:
                self._checkout(self.branch)
            else:
                self._checkout("-b", self.branch, "--track", f"{self.remote}/{self.branch}")

            self._git.run(
                "merge",
                "--ff-only",
                self.remote_tracking_ref,
                error=BranchDivergedError,
                branch=self.branch,
            )
            logger.info(f"Branch {self.branch} is up to date with {self.remote}")

        self._state = SyncState.BRANCH_SYNCED
        return self._state

    def _checkout(self, *args: str) -> None:
        self._git.run("checkout", *args, branch=self.branch)

    def stage(self) -> bool:
        """
        Stage the artifact tree.

        Returns:
            True if the staged tree differs from the branch tip
        """
        self._require_state("stage", SyncState.BRANCH_SYNCED)
        pathspec = self._artifact_pathspec()

        if self._artifact_root.exists():
            self._git.run("add", "-A", "--", pathspec, PARTIAL_EXCLUDE, branch=self.branch)

        diff = self._git.run("diff", "--cached", "--quiet", "--", pathspec, check=False)
        if diff.returncode not in (0, 1):
            raise GitCommandFailedError(
                "Cannot compare staged artifacts with branch tip",
                branch=self.branch,
                command="git diff --cached",
                stderr=diff.stderr,
            )

        self._state = SyncState.STAGED
        return diff.returncode == 1

    def stage_and_commit(self, message: CommitMessage | str) -> str | None:
        """
        Stage the artifact tree and commit it if it changed.

        Args:
            message: Commit message

        Returns:
            New commit SHA, or None when nothing changed
        """
        if not self.stage():
            self._state = SyncState.NO_OP_SKIPPED
            logger.info(f"No changes in {self._artifact_pathspec()}. Skip commit.")
            return None

        text = str(message)
        self._git.run(
            "-c",
            f"user.name={self._config.author_name}",
            "-c",
            f"user.email={self._config.author_email}",
            "-c",
            "commit.gpgsign=false",
            "commit",
            "--no-verify",
            "-m",
            text,
            "--",
            self._artifact_pathspec(),
            branch=self.branch,
        )
        sha = self.head_sha()
        self._state = SyncState.COMMITTED
        log_success(logger, f"Committed {sha[:12]} on {self.branch}: {text}")
        return sha

    def head_sha(self) -> str:
        return self._git.output("rev-parse", "HEAD", branch=self.branch)

    def has_unpushed_commits(self) -> bool:
        """Whether the local branch holds commits the remote branch lacks."""
        local_ref = f"refs/heads/{self.branch}"
        if not self._git.ref_exists(local_ref):
            return False
        if not self._git.ref_exists(self.remote_tracking_ref):
            return True
        count = self._git.output(
            "rev-list", "--count", f"{self.remote_tracking_ref}..{local_ref}", branch=self.branch
        )
        return int(count or 0) > 0

    def push(self) -> None:
        """
        Push the environment branch to the same-named remote branch.

        Raises:
            PushRejectedError: If the remote rejects the push or is unreachable
        """
        self._require_state(
            "push",
            SyncState.BRANCH_SYNCED,
            SyncState.COMMITTED,
            SyncState.NO_OP_SKIPPED,
        )
        self.ensure_remote()
        self._git.run(
            "push",
            "--set-upstream",
            self.remote,
            self._environment.refspec,
            error=PushRejectedError,
            branch=self.branch,
        )
        self._state = SyncState.PUSHED
        log_success(
            logger,
            f"Pushed to {strip_credentials(self._config.remote_url or '')} ({self.branch})",
        )
