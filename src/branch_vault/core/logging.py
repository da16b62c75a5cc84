"""
Logging setup for Branch Vault.

Every phase of a cycle logs through the ``branch_vault`` logger. Console
output goes through rich; a file handler appends timestamped lines to a
persistent sink so unattended runs stay auditable. Registered secrets
are masked on every handler.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOGGER_NAME = "branch_vault"
FILE_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
REDACTED = "***"

logger = logging.getLogger(__name__)


def log_success(log: logging.Logger, msg: str, *args) -> None:
    """Log at SUCCESS level."""
    log.log(SUCCESS, msg, *args)


def redact(text: str, secrets: Iterable[str]) -> str:
    """Mask every secret occurring in text."""
    for secret in sorted(set(secrets), key=len, reverse=True):
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class SecretRedactingFilter(logging.Filter):
    """Replace secret values in log records with a fixed mask."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def add_secret(self, secret: str) -> None:
        if secret and secret not in self._secrets:
            self._secrets.append(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = redact(record.getMessage(), self._secrets)
            record.args = None
        return True


def configure_logging(
    log_file: Path | None = None,
    level: str = "INFO",
    secrets: Iterable[str] = (),
    console: Console | None = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_file: Persistent log sink; None for console only
        level: Log level name
        secrets: Values to mask in every record
        console: Rich console for terminal output (default: stderr)

    Returns:
        The configured ``branch_vault`` logger
    """
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level.upper())
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    redactor = SecretRedactingFilter(secrets)

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        log_time_format=f"[{DATE_FORMAT}]",
    )
    console_handler.addFilter(redactor)
    root.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot open log file {log_file}, logging to console only: {e}")
        else:
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            file_handler.addFilter(redactor)
            root.addHandler(file_handler)

    return root
