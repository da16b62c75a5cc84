"""
Database Dumper - point-in-time PostgreSQL dump into the artifact store.

pg_dump runs either directly against the configured host or inside an
already running database container. Its plain-format output is streamed
through gzip into a temporary file that only replaces the dated artifact
once the dump is known to be complete and non-empty.
"""

import gzip
import logging
import os
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path

from branch_vault.artifacts.store import ArtifactStore
from branch_vault.core.config import DatabaseConfig
from branch_vault.core.exceptions import (
    ConfigurationMissingError,
    DumpProducedNoDataError,
    DumpToolFailedError,
)
from branch_vault.core.logging import log_success, redact

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
STDERR_TAIL_CHARS = 2000


class DumpTransport(ABC):
    """How pg_dump reaches the database."""

    name = "abstract"

    def __init__(self, config: DatabaseConfig):
        self._config = config

    @abstractmethod
    def command(self) -> list[str]:
        """Argument vector that writes a plain SQL dump to stdout."""

    def environment(self) -> dict[str, str]:
        """Extra environment for the dump process."""
        password = self._config.password.get_secret_value() if self._config.password else ""
        return {"PGPASSWORD": password}

    def preflight(self) -> None:
        """Check the transport can run before any file is created."""

    def describe(self) -> str:
        return f"{self.name} {self._config.user}@{self._config.database}"

    def _pg_dump_args(self) -> list[str]:
        # no --verbose: it stamps start/finish times into plain dumps
        return [
            "--username",
            self._config.user,
            "--dbname",
            self._config.database,
            "--format=plain",
            "--no-password",
        ]


class DirectTransport(DumpTransport):
    """pg_dump over the network against host and port."""

    name = "direct"

    def __init__(self, config: DatabaseConfig, executable: str = "pg_dump"):
        super().__init__(config)
        self._executable = executable

    def command(self) -> list[str]:
        return [
            self._executable,
            "--host",
            self._config.host,
            "--port",
            str(self._config.port),
            *self._pg_dump_args(),
        ]

    def describe(self) -> str:
        return f"{super().describe()} at {self._config.host}:{self._config.port}"


class ContainerTransport(DumpTransport):
    """pg_dump executed inside a running database container."""

    name = "container"

    def __init__(self, config: DatabaseConfig, docker: str = "docker"):
        super().__init__(config)
        if not config.container:
            raise ConfigurationMissingError(
                "Container transport requires a container name",
                missing=["POSTGRES_CONTAINER"],
            )
        self._container = config.container
        self._docker = docker

    def command(self) -> list[str]:
        # -e without a value forwards PGPASSWORD from the client environment,
        # keeping the password off the command line
        return [
            self._docker,
            "exec",
            "-e",
            "PGPASSWORD",
            self._container,
            "pg_dump",
            *self._pg_dump_args(),
        ]

    def preflight(self) -> None:
        try:
            result = subprocess.run(
                [
                    self._docker,
                    "ps",
                    "--filter",
                    f"name=^{self._container}$",
                    "--format",
                    "{{.Names}}",
                ],
                capture_output=True,
                text=True,
                timeout=30,
                shell=False,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            raise DumpToolFailedError(f"Cannot query docker for container {self._container}: {e}")

        if result.returncode != 0 or self._container not in result.stdout.split():
            raise DumpToolFailedError(
                f"Container {self._container} is not running",
                exit_code=result.returncode,
                stderr=result.stderr,
            )

    def describe(self) -> str:
        return f"{super().describe()} in container {self._container}"


def transport_for(config: DatabaseConfig) -> DumpTransport:
    """Container transport when a container is configured, direct otherwise."""
    if config.container:
        return ContainerTransport(config)
    return DirectTransport(config)


class DatabaseDumper:
    """
    Produces the compressed database artifact for a snapshot date.

    Any failure is fatal to the cycle. The artifact path either holds a
    complete dump or is left as it was before the call.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        store: ArtifactStore,
        transport: DumpTransport | None = None,
    ):
        """
        Initialize the dumper.

        Args:
            config: Database connection settings
            store: Artifact store receiving the dump
            transport: How to reach the database (default: chosen from config)
        """
        self._config = config
        self._store = store
        self._transport = transport
        self._secrets = [config.password.get_secret_value()] if config.password else []

    @property
    def transport(self) -> DumpTransport:
        if self._transport is None:
            self._transport = transport_for(self._config)
        return self._transport

    def dump(self, snapshot_date: date) -> Path:
        """
        Dump the database into the artifact store.

        Args:
            snapshot_date: Day-key naming the artifact

        Returns:
            Path of the compressed dump

        Raises:
            ConfigurationMissingError: If no password is configured
            DumpToolFailedError: If pg_dump fails, times out or cannot start
            DumpProducedNoDataError: If pg_dump succeeds without output
        """
        if not self._config.password or not self._config.password.get_secret_value():
            raise ConfigurationMissingError(
                "POSTGRES_PASSWORD is not set", missing=["POSTGRES_PASSWORD"]
            )

        transport = self.transport
        transport.preflight()

        target = self._store.database_artifact_path(snapshot_date)
        logger.info(f"Dumping database {transport.describe()} to {target}")

        with self._store.atomic_write(target) as partial:
            raw_bytes = self._stream_to(partial, transport)
            if raw_bytes == 0 or partial.stat().st_size == 0:
                raise DumpProducedNoDataError(
                    f"Database dump produced no data for {self._config.database}",
                    artifact_path=str(target),
                )

        size = target.stat().st_size
        log_success(logger, f"Database backup completed: {target} ({size} bytes)")
        return target

    def _stream_to(self, partial: Path, transport: DumpTransport) -> int:
        """Run the dump, gzip its stdout into partial, return uncompressed bytes."""
        command = transport.command()
        env = {**os.environ, **transport.environment()}
        timeout = self._config.dump_timeout_seconds
        timed_out = threading.Event()
        raw_bytes = 0

        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    env=env,
                    shell=False,
                )
            except OSError as e:
                raise DumpToolFailedError(f"Cannot start dump tool {command[0]}: {e}")

            watchdog = None
            if timeout:

                def kill() -> None:
                    if process.poll() is None:
                        timed_out.set()
                        process.kill()

                watchdog = threading.Timer(timeout, kill)
                watchdog.start()

            try:
                with open(partial, "wb") as raw, gzip.GzipFile(
                    filename="", mode="wb", fileobj=raw, mtime=0
                ) as compressed:
                    while True:
                        chunk = process.stdout.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        compressed.write(chunk)
                        raw_bytes += len(chunk)
                process.stdout.close()
                exit_code = process.wait()
            except BaseException:
                process.kill()
                process.wait()
                raise
            finally:
                if watchdog is not None:
                    watchdog.cancel()

            stderr_file.seek(0)
            stderr = redact(
                stderr_file.read().decode("utf-8", errors="replace"), self._secrets
            )[-STDERR_TAIL_CHARS:]

        if timed_out.is_set() and exit_code != 0:
            raise DumpToolFailedError(
                f"Dump tool exceeded {timeout}s and was killed",
                exit_code=exit_code,
                stderr=stderr,
            )
        if exit_code != 0:
            if stderr:
                logger.error(f"Dump tool stderr: {stderr.strip()}")
            raise DumpToolFailedError(
                f"Dump tool exited with status {exit_code}",
                exit_code=exit_code,
                stderr=stderr,
            )
        return raw_bytes
