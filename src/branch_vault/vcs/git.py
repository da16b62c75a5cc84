"""
Git command runner.

Thin wrapper over the git CLI that never prompts, captures output, and
masks secrets before anything reaches a log or an exception.
"""

import logging
import os
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from branch_vault.core.exceptions import GitCommandFailedError, VersionControlError
from branch_vault.core.logging import redact

logger = logging.getLogger(__name__)


def strip_credentials(url: str) -> str:
    """Remove any userinfo from an http(s) URL."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or "@" not in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=parts.netloc.rsplit("@", 1)[1]))


def authenticated_url(url: str, token: str | None) -> str:
    """
    Build the push URL from a canonical URL and the current token.

    Any credential already present in url is discarded. Non-http(s) URLs
    (ssh, local paths) are returned unchanged.
    """
    canonical = strip_credentials(url)
    parts = urlsplit(canonical)
    if not token or parts.scheme not in ("http", "https"):
        return canonical
    return urlunsplit(parts._replace(netloc=f"{quote(token, safe='')}@{parts.netloc}"))


def token_secrets(token: str | None) -> list[str]:
    """The token as given and as embedded in a URL, for redaction."""
    if not token:
        return []
    return list(dict.fromkeys([token, quote(token, safe="")]))


@dataclass
class GitResult:
    """Outcome of one git invocation."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Git:
    """Runs git commands inside one work tree."""

    def __init__(
        self,
        work_tree: Path,
        secrets: Iterable[str] = (),
        executable: str = "git",
        timeout_seconds: float | None = None,
    ):
        self._work_tree = Path(work_tree)
        self._secrets = [s for s in secrets if s]
        self._executable = executable
        self._timeout = timeout_seconds

    @property
    def work_tree(self) -> Path:
        return self._work_tree

    def redact(self, text: str) -> str:
        return redact(text, self._secrets)

    def run(
        self,
        *args: str,
        check: bool = True,
        error: type[VersionControlError] = GitCommandFailedError,
        branch: str | None = None,
    ) -> GitResult:
        """
        Run ``git <args>`` in the work tree.

        Args:
            args: git arguments
            check: Raise when the command exits non-zero
            error: Exception type raised on failure
            branch: Branch named in the raised error

        Returns:
            GitResult with captured output

        Raises:
            VersionControlError: If check is set and the command fails
        """
        argv = [self._executable, *args]
        display = self.redact(" ".join(["git", *args]))
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}

        logger.debug(f"Running {display}")
        try:
            completed = subprocess.run(
                argv,
                cwd=self._work_tree,
                capture_output=True,
                text=True,
                env=env,
                timeout=self._timeout,
                shell=False,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            raise error(
                f"Cannot run {display}: {self.redact(str(e))}",
                branch=branch,
                command=display,
            ) from e

        result = GitResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=self.redact(completed.stderr),
        )

        if check and not result.ok:
            detail = result.stderr.strip().splitlines()
            raise error(
                f"{display} failed: {detail[-1] if detail else f'exit {result.returncode}'}",
                branch=branch,
                command=display,
                stderr=result.stderr,
            )
        return result

    def output(self, *args: str, **kwargs) -> str:
        """Run a command and return stripped stdout."""
        return self.run(*args, **kwargs).stdout.strip()

    def ref_exists(self, ref: str) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", ref, check=False).ok
