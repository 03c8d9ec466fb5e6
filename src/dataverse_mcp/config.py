# Dataverse FetchXML MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the Dataverse FetchXML MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import os

DEFAULT_API_VERSION = "v9.2"
DEFAULT_AUTHORITY_URL = "https://login.microsoftonline.com"
DEFAULT_AGGREGATE_PAGE_SIZE = 5000


class LogLevel(str, Enum):
    """Verbosity of the per-request diagnostics emitted by the client."""

    DEBUG = "debug"
    INFORMATION = "information"

    @classmethod
    def parse(cls, raw: str | None) -> "LogLevel":
        if raw and raw.strip().lower() in {"debug", "verbose", "trace"}:
            return cls.DEBUG
        return cls.INFORMATION


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _clean_env(name: str) -> str | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    return val.strip()


@dataclass
class DataverseConfig:
    """Connection, credential and guardrail settings for a Dataverse environment."""

    url: str | None
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
    access_token: str | None = None
    mock_mode: bool = False

    api_version: str = DEFAULT_API_VERSION
    authority_url: str = DEFAULT_AUTHORITY_URL
    log_level: LogLevel = LogLevel.INFORMATION
    verify_tls: bool = True
    http_timeout_seconds: int = 60

    # Page-size cap injected into aggregate queries that do not set one.
    aggregate_page_size: int = DEFAULT_AGGREGATE_PAGE_SIZE

    # Tool guardrail: rows echoed back by dataverse_retrieve_rows.
    max_rows_returned: int = 500

    # Metadata listing cache
    cache_ttl_seconds: int = 60
    cache_max_entries: int = 128

    @property
    def base_url(self) -> str | None:
        """Environment URL without trailing slashes."""
        if not self.url:
            return None
        return self.url.rstrip("/")

    @property
    def api_base_url(self) -> str | None:
        base = self.base_url
        if base is None:
            return None
        return f"{base}/api/data/{self.api_version}"

    @property
    def effective_scope(self) -> str | None:
        """OAuth scope, defaulting to the environment's ``/.default`` scope."""
        if self.scope:
            return self.scope
        base = self.base_url
        return f"{base}/.default" if base else None

    @classmethod
    def from_env(cls) -> "DataverseConfig":
        """Create configuration from environment variables."""
        return cls(
            url=_clean_env("DATAVERSE_URL"),
            tenant_id=_clean_env("DATAVERSE_TENANT_ID"),
            client_id=_clean_env("DATAVERSE_CLIENT_ID"),
            client_secret=_clean_env("DATAVERSE_CLIENT_SECRET"),
            scope=_clean_env("DATAVERSE_SCOPE"),
            access_token=_clean_env("DATAVERSE_ACCESS_TOKEN"),
            mock_mode=_parse_bool_env("DATAVERSE_MOCK_MODE", default=False),
            api_version=_clean_env("DATAVERSE_API_VERSION") or DEFAULT_API_VERSION,
            authority_url=(
                _clean_env("DATAVERSE_AUTHORITY_URL") or DEFAULT_AUTHORITY_URL
            ).rstrip("/"),
            log_level=LogLevel.parse(os.getenv("DATAVERSE_LOG_LEVEL")),
            verify_tls=_parse_bool_env("DATAVERSE_VERIFY_TLS", default=True),
            http_timeout_seconds=_parse_int_env(
                "DATAVERSE_HTTP_TIMEOUT", default=60, min_value=1, max_value=3600
            ),
            aggregate_page_size=_parse_int_env(
                "DATAVERSE_AGGREGATE_PAGE_SIZE",
                default=DEFAULT_AGGREGATE_PAGE_SIZE,
                min_value=1,
                max_value=DEFAULT_AGGREGATE_PAGE_SIZE,
            ),
            max_rows_returned=_parse_int_env(
                "DATAVERSE_MAX_ROWS_RETURNED", default=500, min_value=1, max_value=100000
            ),
            cache_ttl_seconds=_parse_int_env(
                "DATAVERSE_CACHE_TTL_SECONDS", default=60, min_value=0, max_value=86400
            ),
            cache_max_entries=_parse_int_env(
                "DATAVERSE_CACHE_MAX_ENTRIES", default=128, min_value=0, max_value=10000
            ),
        )
