"""Configuration loading and validation.

This module is responsible for:

- Loading a config file (`kusto-config.conf` style) or `.env` into the process
  environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating required fields and providing actionable error messages.
"""

import os
from pathlib import Path
from typing import TypeVar

import dotenv
from pydantic import BaseModel, Field, field_validator

_T = TypeVar("_T", int, float)

KUSTO_TOKEN_SCOPE = "https://kusto.kusto.windows.net/.default"


def _get_required_env(name: str) -> str:
    """Read a required env var or raise a helpful error."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} is required. Please set it in your configuration file.")
    if value.startswith("your_") and value.endswith("_here"):
        raise ValueError(f"{name} is required. Please replace the placeholder value in your configuration file.")
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


class KustoConfig(BaseModel):
    """Connection settings for the Kusto (Azure Data Explorer) ingestion endpoint."""

    cluster_url: str = Field(..., description="Kusto cluster URL")
    database: str = Field(..., description="Target database")
    table: str = Field(..., description="Target table")
    client_id: str = Field(..., description="Azure AD application (client) id")
    client_secret: str = Field(..., description="Azure AD application secret")
    tenant_id: str = Field(..., description="Azure AD tenant id")

    mapping_name: str = Field(default="JsonMapping", description="Ingestion JSON mapping name")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request HTTP timeout (seconds)")
    cache_token: bool = Field(default=False, description="Reuse bearer tokens until shortly before expiry")

    @property
    def token_url(self) -> str:
        """Azure AD client-credentials endpoint for this tenant."""
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def ingest_url(self) -> str:
        """Streaming ingestion endpoint for the configured database/table."""
        return (
            f"{self.cluster_url}/v1/rest/ingest/{self.database}/{self.table}"
            f"?streamFormat=json&mappingName={self.mapping_name}"
        )

    @field_validator("cluster_url")
    def validate_cluster_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"KUSTO_CLUSTER_URL must start with https:// or http:// (got {v!r})")
        return v.rstrip("/")

    @field_validator("database", "table", "client_id", "client_secret", "tenant_id")
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("value must not be empty")
        return v.strip()


class ProbeConfig(BaseModel):
    """Probe cadence and local buffering settings."""

    source: str = Field(..., description="Identity of the collecting host")
    ping_interval: float = Field(default=5.0, gt=0, description="Seconds between probes of one target")
    ping_count: int = Field(default=1, ge=1, description="Echo requests per probe")
    ping_timeout: float = Field(default=3.0, gt=0, description="Seconds to wait for a reply")
    retry_interval: float = Field(default=30.0, gt=0, description="Seconds between buffer drain passes")
    max_buffer_size: int = Field(default=1000, ge=1, description="Max records kept in the local buffer")
    buffer_path: Path = Field(default=Path("kusto-buffer.jsonl"), description="Local buffer file (NDJSON)")

    @field_validator("source")
    def validate_source(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("SOURCE is required. Please set it in your configuration file.")
        return v.strip()


class Config(BaseModel):
    """Top-level application configuration."""

    kusto: KustoConfig = Field(..., description="Kusto configuration")
    probe: ProbeConfig = Field(..., description="Probe configuration")
    debug: bool = Field(default=False, description="Verbose (DEBUG) logging")
    observability_db_path: str | None = Field(default=None, description="DuckDB delivery journal path")


def load_config(config_file: str | Path | None = None) -> Config:
    """Load application configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so values from `config_file` (or a local
      `.env` when no file is given) are visible to the process.
    - Raises `ValueError` with actionable messages when required configuration is
      missing or still contains placeholder values.
    """
    if config_file is not None:
        path = Path(config_file)
        if not path.is_file():
            raise ValueError(
                f"Configuration file not found: {path}. "
                "Copy kusto-config.conf.template to kusto-config.conf and configure it."
            )
        dotenv.load_dotenv(path)
    else:
        dotenv.load_dotenv()

    kusto = KustoConfig(
        cluster_url=_get_required_env("KUSTO_CLUSTER_URL"),
        database=_get_required_env("KUSTO_DATABASE"),
        table=_get_required_env("KUSTO_TABLE"),
        client_id=_get_required_env("KUSTO_CLIENT_ID"),
        client_secret=_get_required_env("KUSTO_CLIENT_SECRET"),
        tenant_id=_get_required_env("KUSTO_TENANT_ID"),
        mapping_name=os.getenv("KUSTO_MAPPING_NAME") or "JsonMapping",
        request_timeout=_get_env_number("KUSTO_REQUEST_TIMEOUT", 30.0, float),
        cache_token=_get_env_bool("KUSTO_CACHE_TOKEN", False),
    )
    probe = ProbeConfig(
        source=_get_required_env("SOURCE"),
        ping_interval=_get_env_number("PING_INTERVAL", 5.0, float),
        ping_count=_get_env_number("PING_COUNT", 1, int),
        ping_timeout=_get_env_number("PING_TIMEOUT", 3.0, float),
        retry_interval=_get_env_number("RETRY_INTERVAL", 30.0, float),
        max_buffer_size=_get_env_number("MAX_BUFFER_SIZE", 1000, int),
        buffer_path=Path(os.getenv("BUFFER_FILE") or "kusto-buffer.jsonl"),
    )
    return Config(
        kusto=kusto,
        probe=probe,
        debug=_get_env_bool("KUSTO_DEBUG", False),
        observability_db_path=os.getenv("OBSERVABILITY_DB_PATH") or None,
    )
