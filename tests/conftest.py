"""Pytest configuration and fixtures."""

import logging
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from branch_vault.core.config import ApiConfig, BackupConfig, DatabaseConfig, GitConfig
from branch_vault.core.logging import LOGGER_NAME
from branch_vault.database.dumper import DumpTransport

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(cwd: Path, *args: str) -> str:
    """Run git in cwd and return stripped stdout."""
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


class ScriptTransport(DumpTransport):
    """Dump transport running a small Python script instead of pg_dump."""

    name = "script"

    def __init__(self, config: DatabaseConfig, output: str = "", exit_code: int = 0, stderr: str = ""):
        super().__init__(config)
        self.script = (
            "import sys\n"
            f"sys.stdout.write({output!r})\n"
            f"sys.stderr.write({stderr!r})\n"
            f"sys.exit({exit_code})\n"
        )

    def command(self) -> list[str]:
        return [sys.executable, "-c", self.script]


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo configure_logging so caplog keeps seeing package records."""
    yield
    package_logger = logging.getLogger(LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database_config() -> DatabaseConfig:
    return DatabaseConfig(password="db-secret", database="appdb")


@pytest.fixture
def bare_remote(temp_dir: Path) -> Path:
    """An empty bare repository acting as the remote."""
    remote = temp_dir / "remote.git"
    remote.mkdir()
    git(remote, "init", "--bare", "--quiet")
    return remote


@pytest.fixture
def work_repo(temp_dir: Path) -> Path:
    """An empty work tree with HEAD on main and no commits."""
    repo = temp_dir / "work"
    repo.mkdir()
    git(repo, "init", "--quiet")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    return repo


@pytest.fixture
def make_config(work_repo: Path, bare_remote: Path) -> Callable[..., BackupConfig]:
    """Factory for a complete configuration bound to the test repositories."""

    def factory(branch: str = "staging", **overrides) -> BackupConfig:
        values = {
            "branch": branch,
            "repo_dir": work_repo,
            "artifact_root": work_repo / "backups",
            "retention_days": 7,
            "log_file": None,
            "database": DatabaseConfig(password="db-secret", database="appdb"),
            "api": ApiConfig(base_url="http://app.test", token="api-token"),
            "git": GitConfig(remote_url=str(bare_remote), token="git-token"),
        }
        values.update(overrides)
        return BackupConfig(**values)

    return factory
