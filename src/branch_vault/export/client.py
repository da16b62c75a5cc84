"""
Object Exporter - logical export of application objects over HTTP.

Fetches the full object collection with one authenticated GET and writes
it to the artifact store as pretty-printed JSON.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

import httpx

from branch_vault.artifacts.store import ArtifactStore
from branch_vault.core.config import ApiConfig
from branch_vault.core.exceptions import (
    ExportMalformedResponseError,
    ExportTimedOutError,
    ExportUnauthorizedOrUnreachableError,
    NoCredentialConfiguredError,
)
from branch_vault.core.logging import log_success

logger = logging.getLogger(__name__)


def serialize_records(records: list[dict[str, Any]]) -> str:
    """Canonical text form of an export: sorted keys, two-space indent."""
    return json.dumps(records, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


class ObjectExporter:
    """
    Client for the application's object collection endpoint.

    Credential modes:
    - Bearer token (``Authorization: Bearer``), used whenever set
    - Basic auth username/password otherwise
    """

    def __init__(
        self,
        config: ApiConfig,
        store: ArtifactStore,
        client: httpx.Client | None = None,
    ):
        """Initialize exporter with API configuration and target store."""
        self._config = config
        self._store = store
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    @property
    def url(self) -> str:
        return self._config.objects_url

    def _auth(self) -> tuple[dict[str, str], httpx.BasicAuth | None]:
        """Headers and auth for the configured credential mode."""
        headers = {"Accept": "application/json"}
        if self._config.uses_bearer:
            headers["Authorization"] = f"Bearer {self._config.token.get_secret_value()}"
            return headers, None
        if self._config.uses_basic_auth:
            return headers, httpx.BasicAuth(
                self._config.basic_auth_user,
                self._config.basic_auth_password.get_secret_value(),
            )
        raise NoCredentialConfiguredError(
            "No API credential configured. Set APP_API_TOKEN or "
            "APP_BASIC_AUTH_USER/APP_BASIC_AUTH_PASSWORD.",
            missing=["APP_API_TOKEN", "APP_BASIC_AUTH_USER", "APP_BASIC_AUTH_PASSWORD"],
        )

    def fetch(self) -> list[dict[str, Any]]:
        """
        Retrieve the full object collection.

        Returns:
            Records in the order the API returned them

        Raises:
            NoCredentialConfiguredError: If neither credential mode is set
            ExportUnauthorizedOrUnreachableError: On non-2xx or connection failure
            ExportTimedOutError: If the request exceeds the timeout
            ExportMalformedResponseError: If the body is not a list of records
        """
        headers, auth = self._auth()

        try:
            if auth is None:
                response = self._client.get(self.url, headers=headers)
            else:
                response = self._client.get(self.url, headers=headers, auth=auth)
        except httpx.TimeoutException as e:
            raise ExportTimedOutError(
                f"Object export timed out after {self._config.timeout_seconds}s",
                url=self.url,
            ) from e
        except httpx.HTTPError as e:
            raise ExportUnauthorizedOrUnreachableError(
                f"Object export endpoint unreachable: {type(e).__name__}",
                url=self.url,
            ) from e

        if not response.is_success:
            status_code = response.status_code
            if status_code in (401, 403):
                message = f"Object export rejected credentials (HTTP {status_code})"
            else:
                message = f"Object export failed (HTTP {status_code})"
            raise ExportUnauthorizedOrUnreachableError(
                message, url=self.url, status_code=status_code
            )

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> list[dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ExportMalformedResponseError(
                "Object export response is not valid JSON",
                url=self.url,
                status_code=response.status_code,
            ) from e

        # Envelope form {"data": [...]}
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            payload = payload["data"]

        if not isinstance(payload, list) or not all(isinstance(r, dict) for r in payload):
            raise ExportMalformedResponseError(
                f"Object export response is not a list of records: {type(payload).__name__}",
                url=self.url,
                status_code=response.status_code,
            )
        return payload

    def export(self, snapshot_date: date) -> Path:
        """
        Export all objects into the artifact store.

        An empty collection is a valid state and is written as ``[]``.

        Args:
            snapshot_date: Day-key naming the artifact

        Returns:
            Path of the export file
        """
        logger.info(f"Exporting objects from {self.url}")
        records = self.fetch()

        target = self._store.export_artifact_path(snapshot_date)
        with self._store.atomic_write(target) as partial:
            partial.write_text(serialize_records(records), encoding="utf-8")

        if records:
            log_success(logger, f"Exported {len(records)} objects to {target}")
        else:
            logger.info(f"No objects to export (empty collection), wrote {target}")
        return target

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, *args):
        """Context manager exit."""
        self.close()
