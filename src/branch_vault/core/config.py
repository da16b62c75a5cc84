"""
Configuration for Branch Vault.

Built once at startup from the process environment and handed to each
component's constructor. Models are frozen; overrides go through
model_copy.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from branch_vault.core.exceptions import ConfigurationMissingError
from branch_vault.core.models import Environment

DEFAULT_LOG_FILE = Path("/var/log/branch_vault.log")


class DatabaseConfig(BaseModel):
    """PostgreSQL connection settings for the dump."""

    model_config = ConfigDict(frozen=True)

    host: str = "postgres"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr | None = None
    database: str = "postgres"
    container: str | None = Field(
        default=None, description="Run pg_dump inside this running container"
    )
    dump_timeout_seconds: float | None = Field(default=None, gt=0)


class ApiConfig(BaseModel):
    """Object export API settings."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://localhost:5678"
    objects_path: str = "/rest/workflows"
    token: SecretStr | None = None
    basic_auth_user: str | None = None
    basic_auth_password: SecretStr | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def objects_url(self) -> str:
        """Full URL of the object collection."""
        return f"{self.base_url.rstrip('/')}/{self.objects_path.lstrip('/')}"

    @property
    def uses_bearer(self) -> bool:
        """Bearer token wins whenever one is set."""
        return bool(self.token and self.token.get_secret_value())

    @property
    def uses_basic_auth(self) -> bool:
        return (
            not self.uses_bearer
            and bool(self.basic_auth_user)
            and bool(self.basic_auth_password and self.basic_auth_password.get_secret_value())
        )

    @property
    def has_credential(self) -> bool:
        return self.uses_bearer or self.uses_basic_auth


class GitConfig(BaseModel):
    """Remote and identity settings for the version-control step."""

    model_config = ConfigDict(frozen=True)

    remote_url: str | None = Field(default=None, description="Canonical URL without credentials")
    token: SecretStr | None = None
    remote_name: str = "origin"
    author_name: str = "branch-vault bot"
    author_email: str = "branch-vault@localhost"


class BackupConfig(BaseModel):
    """Complete configuration for one orchestrator invocation."""

    model_config = ConfigDict(frozen=True)

    branch: str = "main"
    repo_dir: Path = Field(default_factory=Path.cwd)
    artifact_root: Path | None = None
    retention_days: int = Field(default=7, ge=0)
    log_file: Path | None = DEFAULT_LOG_FILE
    log_level: str = "INFO"
    state_file: Path | None = None
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    git: GitConfig = Field(default_factory=GitConfig)

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        """Reject names git would refuse as a branch."""
        Environment(v)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def environment(self) -> Environment:
        return Environment(self.branch)

    @property
    def resolved_artifact_root(self) -> Path:
        """Artifact root, defaulting to backups/ inside the work tree."""
        return self.artifact_root or self.repo_dir / "backups"

    @property
    def resolved_state_file(self) -> Path:
        """Checkpoint file, kept under .git so it is never committed."""
        return self.state_file or self.repo_dir / ".git" / "branch_vault_state.json"

    def secrets(self) -> list[str]:
        """All configured secret values, for log redaction."""
        values = [
            self.database.password,
            self.api.token,
            self.api.basic_auth_password,
            self.git.token,
        ]
        found = [v.get_secret_value() for v in values if v and v.get_secret_value()]
        if self.git.token and self.git.token.get_secret_value():
            # Form embedded in the remote URL
            found.append(quote(self.git.token.get_secret_value(), safe=""))
        return list(dict.fromkeys(found))

    def validate_required(self) -> None:
        """
        Check every required setting in one pass.

        Raises:
            ConfigurationMissingError: Listing all missing settings
        """
        missing = []
        if not self.database.password or not self.database.password.get_secret_value():
            missing.append("POSTGRES_PASSWORD")
        if not self.api.has_credential:
            missing.append("APP_API_TOKEN or APP_BASIC_AUTH_USER/APP_BASIC_AUTH_PASSWORD")
        if not self.git.token or not self.git.token.get_secret_value():
            missing.append("GIT_TOKEN")
        if not self.git.remote_url:
            missing.append("GIT_REPO_URL")

        root = self.resolved_artifact_root.resolve()
        if not root.is_relative_to(self.repo_dir.resolve()):
            missing.append("BACKUP_DIR inside REPO_DIR")

        if missing:
            raise ConfigurationMissingError(
                f"Missing required configuration: {', '.join(missing)}",
                missing=missing,
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BackupConfig":
        """
        Load configuration from environment variables.

        Empty values count as unset. Presence of required values is not
        checked here; call validate_required() for that.

        Raises:
            ConfigurationMissingError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ

        def get(key: str, default: str | None = None) -> str | None:
            value = env.get(key)
            return value if value else default

        def drop_unset(values: dict) -> dict:
            return {k: v for k, v in values.items() if v is not None}

        try:
            return cls(
                **drop_unset(
                    {
                        "branch": get("ENV_BRANCH"),
                        "repo_dir": get("REPO_DIR"),
                        "artifact_root": get("BACKUP_DIR"),
                        "retention_days": get("RETENTION"),
                        "log_file": get("LOG_FILE"),
                        "log_level": get("LOG_LEVEL"),
                        "state_file": get("STATE_FILE"),
                    }
                ),
                database=DatabaseConfig(
                    **drop_unset(
                        {
                            "host": get("POSTGRES_HOST"),
                            "port": get("POSTGRES_PORT"),
                            "user": get("POSTGRES_USER"),
                            "password": get("POSTGRES_PASSWORD"),
                            "database": get("POSTGRES_DB"),
                            "container": get("POSTGRES_CONTAINER"),
                            "dump_timeout_seconds": get("PG_DUMP_TIMEOUT"),
                        }
                    )
                ),
                api=ApiConfig(
                    **drop_unset(
                        {
                            "base_url": get("APP_API_URL"),
                            "objects_path": get("APP_OBJECTS_PATH"),
                            "token": get("APP_API_TOKEN"),
                            "basic_auth_user": get("APP_BASIC_AUTH_USER"),
                            "basic_auth_password": get("APP_BASIC_AUTH_PASSWORD"),
                            "timeout_seconds": get("APP_API_TIMEOUT"),
                        }
                    )
                ),
                git=GitConfig(
                    **drop_unset(
                        {
                            "remote_url": get("GIT_REPO_URL"),
                            "token": get("GIT_TOKEN"),
                            "remote_name": get("GIT_REMOTE"),
                            "author_name": get("GIT_AUTHOR_NAME"),
                            "author_email": get("GIT_AUTHOR_EMAIL"),
                        }
                    )
                ),
            )
        except ValidationError as e:
            invalid = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
            raise ConfigurationMissingError(
                f"Invalid configuration values: {', '.join(invalid)}",
                details={"invalid": invalid},
            ) from e
