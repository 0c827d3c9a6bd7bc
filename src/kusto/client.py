"""Async client for Kusto (Azure Data Explorer) streaming ingestion.

Implements the collector's uploader interface:

- `authenticate()` fetches an Azure AD bearer token (client-credentials flow).
- `upload(token, record)` streams one JSON record into the configured table.

The HTTP calls use `requests` executed in a thread so the event loop is never
blocked by network I/O.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import requests  # type: ignore

from collector.models import Measurement
from config import KUSTO_TOKEN_SCOPE, KustoConfig

# Refresh cached tokens this many seconds before they expire.
TOKEN_EXPIRY_MARGIN_S = 60.0


class AuthenticationError(RuntimeError):
    """Azure AD did not issue a token."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class DeliveryError(RuntimeError):
    """Kusto did not accept an ingested record."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class KustoIngestClient:
    """Authenticated uploader for one Kusto database/table.

    Members:
    - Config: `config`
    - Token endpoint: `token_url`
    - Ingest endpoint: `ingest_url`
    - Cached token: `_token` / `_token_expires_at` (only used when `config.cache_token`)
    """

    def __init__(self, config: KustoConfig):
        """Create a client for the configured cluster, database and table."""
        self.config = config
        self.token_url: str = config.token_url
        self.ingest_url: str = config.ingest_url

        self._token: str | None = None
        self._token_expires_at: float = 0.0

    async def authenticate(self) -> str:
        """Return a bearer token, requesting a fresh one unless a cached token is still valid."""
        if self.config.cache_token and self._token is not None and time.monotonic() < self._token_expires_at:
            return self._token

        token, expires_in = await asyncio.to_thread(self._request_token)
        if self.config.cache_token:
            self._token = token
            self._token_expires_at = time.monotonic() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN_S)
        return token

    def invalidate_token(self) -> None:
        """Drop any cached token so the next call re-authenticates."""
        self._token = None
        self._token_expires_at = 0.0

    async def upload(self, token: str, record: Measurement) -> None:
        """Ingest a single record; raises `DeliveryError` if Kusto did not accept it."""
        body = record.to_wire()
        try:
            await asyncio.to_thread(self._post_record, token, body)
        except DeliveryError as exc:
            if exc.status_code == 401:
                self.invalidate_token()
            raise

    def _request_token(self) -> tuple[str, float]:
        """Execute the client-credentials token request (runs in a worker thread)."""
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": KUSTO_TOKEN_SCOPE,
            "grant_type": "client_credentials",
        }
        try:
            resp = requests.request(
                "POST",
                self.token_url,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data=form,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise AuthenticationError(f"Failed to get Azure AD token: {exc}") from exc

        payload = _json_or_none(resp)
        if not 200 <= resp.status_code < 300:
            raise AuthenticationError(
                f"Azure AD token request failed: HTTP {resp.status_code}",
                status_code=resp.status_code,
                payload=payload,
            )

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthenticationError(
                "Failed to extract access token from response", status_code=resp.status_code, payload=payload
            )

        try:
            expires_in = float(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0.0
        return str(access_token), expires_in

    def _post_record(self, token: str, body: dict[str, Any]) -> None:
        """POST one record to the streaming ingest endpoint (runs in a worker thread)."""
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            resp = requests.request(
                "POST", self.ingest_url, headers=headers, json=body, timeout=self.config.request_timeout
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Kusto ingest request failed: {exc}") from exc

        payload = _json_or_none(resp)
        if not 200 <= resp.status_code < 300:
            raise DeliveryError(
                f"Kusto ingest HTTP {resp.status_code}: {payload}", status_code=resp.status_code, payload=payload
            )
        if not _ingest_accepted(payload):
            raise DeliveryError(
                f"Kusto ingest did not confirm the record: {payload}", status_code=resp.status_code, payload=payload
            )


def _json_or_none(resp: Any) -> Any:
    """Best-effort JSON decoding of a response body."""
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def _ingest_accepted(payload: Any) -> bool:
    """Return True unless the ingest result table reports a row count other than 1.

    Streaming ingest answers with `{"Tables": [{"Rows": [[1, ...]]}]}`; a body
    without a result table is accepted on the HTTP status alone.
    """
    if not isinstance(payload, dict) or "Tables" not in payload:
        return True
    try:
        first_cell = payload["Tables"][0]["Rows"][0][0]
    except (IndexError, KeyError, TypeError):
        return False
    return first_cell == 1
