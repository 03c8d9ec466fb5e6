# Dataverse FetchXML MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define "business logic"
# that is exposed as MCP tools.  The stdio transport simply calls
# `register_tools(server)` to wire these up.

from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..auth import OAuthClient, StaticTokenProvider
from ..cache import MetadataCache
from ..client import DataverseClient
from ..config import DataverseConfig
from ..mock import MockDataverseService

# ---------------------------------------------------------------------------
# Internal helpers (env flags, error shape, cache, client factory)
# ---------------------------------------------------------------------------

def _env_flag(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable."""
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape used by diagnostics."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err

_CACHE: MetadataCache | None = None
_CACHE_SIGNATURE: tuple[int, int] | None = None

def _get_cache(cfg: DataverseConfig) -> MetadataCache:
    """Lazily create (or re-create) the metadata cache based on config."""
    global _CACHE, _CACHE_SIGNATURE

    signature = (int(cfg.cache_ttl_seconds), int(cfg.cache_max_entries))
    if _CACHE is None or _CACHE_SIGNATURE != signature:
        _CACHE = MetadataCache(ttl_seconds=signature[0], max_entries=signature[1])
        _CACHE_SIGNATURE = signature
    return _CACHE

_MOCK_SERVICE: MockDataverseService | None = None

def _get_mock_service() -> MockDataverseService:
    """One fake service per process so mock-mode state survives between tools."""
    global _MOCK_SERVICE

    if _MOCK_SERVICE is None:
        _MOCK_SERVICE = MockDataverseService()
    return _MOCK_SERVICE

def _make_client(cfg: Optional[DataverseConfig] = None) -> DataverseClient:
    """Create a DataverseClient from environment variables.

    If DATAVERSE_MOCK_MODE is truthy, the client talks to the in-process
    MockDataverseService instead of a real environment.

    Note: Callers should prefer invoking this with *no arguments* to keep
    unit tests monkeypatch-friendly (tests often replace _make_client with
    a no-arg lambda).
    """
    cfg = cfg or DataverseConfig.from_env()

    if cfg.mock_mode or _env_flag("DATAVERSE_MOCK_MODE", False):
        cfg.url = cfg.url or "https://mock.crm.dynamics.com"
        return DataverseClient(
            config=cfg,
            oauth=StaticTokenProvider("mock-token"),
            transport=_get_mock_service().transport(),
        )

    if cfg.access_token:
        return DataverseClient(config=cfg, oauth=StaticTokenProvider(cfg.access_token))

    return DataverseClient(config=cfg, oauth=OAuthClient(config=cfg))

# ---------------------------------------------------------------------------
# Core async tasks (library-style)
# ---------------------------------------------------------------------------

async def ping() -> Dict[str, Any]:
    client = _make_client()
    ok = await client.ping()
    return {"ok": bool(ok)}

async def retrieve_rows(entity_set: str, fetchxml: str) -> Dict[str, Any]:
    """Run a FetchXML query and return its rows (capped for tool output)."""
    cfg = DataverseConfig.from_env()
    client = _make_client()

    started = time.time()
    rows = await client.retrieve_rows(entity_set, fetchxml)
    elapsed_ms = int((time.time() - started) * 1000)

    cap = cfg.max_rows_returned
    returned = rows[:cap]

    columns: List[str] = []
    for row in returned:
        for name in row:
            if name not in columns:
                columns.append(name)

    return {
        "entity_set": entity_set,
        "columns": columns,
        "rows": [row.to_dict() for row in returned],
        "truncated": len(rows) > len(returned),
        "meta": {
            "total_rows": len(rows),
            "returned_rows": len(returned),
            "cap_rows": cap,
            "elapsed_ms": elapsed_ms,
        },
    }

async def retrieve_count(entity_set: str, fetchxml: str) -> Dict[str, Any]:
    client = _make_client()

    started = time.time()
    count = await client.retrieve_count(entity_set, fetchxml)
    elapsed_ms = int((time.time() - started) * 1000)

    return {"entity_set": entity_set, "count": count, "meta": {"elapsed_ms": elapsed_ms}}

# ---------------------------------------------------------------------------
# Metadata helpers
# ---------------------------------------------------------------------------

async def list_entities(custom_only: bool = False) -> Dict[str, Any]:
    cfg = DataverseConfig.from_env()
    cache = _get_cache(cfg)

    async def load() -> List[Dict[str, Any]]:
        definitions = await _make_client().list_entity_definitions()
        return [
            {
                "logical_name": d.logical_name,
                "schema_name": d.schema_name,
                "entity_set_name": d.entity_set_name,
                "display_name": d.display_name,
                "is_custom_entity": d.is_custom_entity,
                "primary_id_attribute": d.primary_id_attribute,
            }
            for d in definitions
        ]

    items = await cache.get_or_load(
        ("entities", id(_make_client), cfg.url, cfg.mock_mode), load
    )

    if custom_only:
        items = [i for i in items if i["is_custom_entity"]]

    return {"entities": items, "meta": {"count": len(items)}}

async def list_attributes(logical_name: str) -> Dict[str, Any]:
    cfg = DataverseConfig.from_env()
    cache = _get_cache(cfg)

    async def load() -> Dict[str, Any]:
        attributes = await _make_client().list_entity_attributes(logical_name)
        items = [
            {
                "logical_name": a.logical_name,
                "schema_name": a.schema_name,
                "attribute_type": a.attribute_type,
                "is_custom_attribute": a.is_custom_attribute,
                "is_valid_for_update": a.is_valid_for_update,
            }
            for a in sorted(attributes, key=lambda a: a.logical_name)
        ]
        return {"logical_name": logical_name, "attributes": items, "meta": {"count": len(items)}}

    return await cache.get_or_load(
        ("attributes", id(_make_client), cfg.url, cfg.mock_mode, logical_name), load
    )

# ---------------------------------------------------------------------------
# Diagnostics & environment helpers
# ---------------------------------------------------------------------------

def _collect_environment_info() -> Dict[str, Any]:
    """Redacted snapshot of environment / OAuth configuration from env."""
    cfg = DataverseConfig.from_env()

    host = None
    if cfg.base_url:
        host = urlparse(cfg.base_url).hostname or cfg.base_url

    if cfg.mock_mode:
        auth_mode = "mock"
    elif cfg.access_token:
        auth_mode = "static-token"
    else:
        auth_mode = "client-credentials"

    return {
        "url": cfg.base_url,
        "host": host,
        "api_version": cfg.api_version,
        "mock_mode": bool(cfg.mock_mode),
        "verify_tls": bool(cfg.verify_tls),
        "log_level": cfg.log_level.value,
        "auth": {
            "mode": auth_mode,
            "tenant_id_configured": bool(cfg.tenant_id),
            "client_id_configured": bool(cfg.client_id),
            "client_secret_configured": bool(cfg.client_secret),
            "access_token_configured": bool(cfg.access_token),
            "scope": cfg.effective_scope,
        },
        "limits": {
            "aggregate_page_size": cfg.aggregate_page_size,
            "max_rows_returned": cfg.max_rows_returned,
            "http_timeout_seconds": cfg.http_timeout_seconds,
        },
        "cache_config": {
            "ttl_seconds": cfg.cache_ttl_seconds,
            "max_entries": cfg.cache_max_entries,
        },
    }

async def get_environment_info() -> Dict[str, Any]:
    return _collect_environment_info()

async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = DataverseConfig.from_env()
    config_info = _collect_environment_info()

    cache = _get_cache(cfg)
    cache.purge_expired()

    checks: List[Dict[str, Any]] = []
    overall_ok = True

    def _elapsed(t0: float) -> int:
        return int((time.time() - t0) * 1000)

    # Client init
    t0 = time.time()
    try:
        client = _make_client()
        checks.append({"name": "client_init", "ok": True, "error": None, "elapsed_ms": _elapsed(t0)})
    except Exception as exc:  # pragma: no cover
        checks.append(
            {
                "name": "client_init",
                "ok": False,
                "error": _make_error("CONFIG_ERROR", str(exc)),
                "elapsed_ms": _elapsed(t0),
            }
        )
        return {
            "ok": False,
            "mock_mode": config_info["mock_mode"],
            "config": config_info,
            "checks": checks,
            "meta": {"elapsed_ms": _elapsed(started), "cache": cache.stats()},
        }

    # Ping
    t0 = time.time()
    try:
        ok_ping = await client.ping()
        if ok_ping:
            checks.append({"name": "ping", "ok": True, "error": None, "elapsed_ms": _elapsed(t0)})
        else:
            overall_ok = False
            checks.append(
                {
                    "name": "ping",
                    "ok": False,
                    "error": _make_error("CONFIG_ERROR", "DATAVERSE_URL is not configured."),
                    "elapsed_ms": _elapsed(t0),
                }
            )
    except Exception as exc:
        overall_ok = False
        checks.append(
            {
                "name": "ping",
                "ok": False,
                "error": _make_error("BACKEND_ERROR", str(exc)),
                "elapsed_ms": _elapsed(t0),
            }
        )

    # Metadata round trip (exercises auth + transport)
    t0 = time.time()
    try:
        definitions = await client.list_entity_definitions()
        checks.append(
            {
                "name": "list_entity_definitions",
                "ok": True,
                "count": len(definitions),
                "error": None,
                "elapsed_ms": _elapsed(t0),
            }
        )
    except Exception as exc:
        overall_ok = False
        checks.append(
            {
                "name": "list_entity_definitions",
                "ok": False,
                "error": _make_error("BACKEND_ERROR", str(exc)),
                "elapsed_ms": _elapsed(t0),
            }
        )

    return {
        "ok": overall_ok,
        "mock_mode": config_info["mock_mode"],
        "config": config_info,
        "checks": checks,
        "meta": {"elapsed_ms": _elapsed(started), "cache": cache.stats()},
    }

# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------

def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="dataverse_ping", description="Basic health check for the Dataverse MCP server.")
    async def mcp_ping() -> Dict[str, Any]:
        return await ping()

    @server.tool(
        name="dataverse_retrieve_rows",
        description=(
            "Run a FetchXML query against a Dataverse entity set and return all matching rows "
            "(paged automatically unless the query sets top)."
        ),
    )
    async def mcp_retrieve_rows(entity_set: str, fetchxml: str) -> Dict[str, Any]:
        return await retrieve_rows(entity_set=entity_set, fetchxml=fetchxml)

    @server.tool(
        name="dataverse_retrieve_count",
        description="Count the records matched by a FetchXML query without returning them.",
    )
    async def mcp_retrieve_count(entity_set: str, fetchxml: str) -> Dict[str, Any]:
        return await retrieve_count(entity_set=entity_set, fetchxml=fetchxml)

    @server.tool(
        name="dataverse_list_entities",
        description="List Dataverse table definitions (logical name, entity set name, primary id).",
    )
    async def mcp_list_entities(custom_only: bool = False) -> Dict[str, Any]:
        return await list_entities(custom_only=custom_only)

    @server.tool(
        name="dataverse_list_attributes",
        description="List readable columns of a Dataverse table by logical name.",
    )
    async def mcp_list_attributes(logical_name: str) -> Dict[str, Any]:
        return await list_attributes(logical_name=logical_name)

    @server.tool(
        name="dataverse_get_environment_info",
        description="Return redacted Dataverse environment configuration (no secrets).",
    )
    async def mcp_get_environment_info() -> Dict[str, Any]:
        return await get_environment_info()

    @server.tool(
        name="dataverse_diagnostics",
        description="Run high-level health checks against the MCP server and Dataverse environment.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
