# Dataverse FetchXML MCP Server
# File: client.py
# Version: v1
"""High-level client for the Dataverse Web API.

Implements:

- retrieve_rows() / retrieve_count() for FetchXML queries, with paging
- get_entity_definition() / list_entity_definitions() for table metadata
- list_entity_attributes() for column metadata
- update_entity() / delete_entity() for single-record changes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx

from . import paging
from .config import DataverseConfig, LogLevel
from .errors import DataverseError, MalformedResponseError, TransportError
from .models import EntityAttribute, EntityDefinition, Row
from .parse import load_json

logger = logging.getLogger(__name__)

PREFER_ANNOTATIONS = (
    'odata.include-annotations="Microsoft.Dynamics.CRM.fetchxmlpagingcookie,'
    'Microsoft.Dynamics.CRM.morerecords"'
)

ENTITY_DEFINITION_SELECT = (
    "LogicalName,SchemaName,DisplayName,EntitySetName,IsCustomEntity,PrimaryIdAttribute"
)
ENTITY_ATTRIBUTE_SELECT = (
    "LogicalName,SchemaName,AttributeType,IsCustomAttribute,"
    "IsValidODataAttribute,IsValidForRead,IsValidForUpdate"
)
ENTITY_ATTRIBUTE_FILTER = "IsValidODataAttribute eq true and IsValidForRead eq true"


class TokenProvider(Protocol):
    async def get_access_token(self) -> str: ...


def _odata_key(value: str) -> str:
    """Single quotes must be doubled inside OData string key literals."""
    return value.replace("'", "''")


def _record_key(record_id: str) -> str:
    return record_id.strip().strip("{}")


@dataclass
class DataverseClient:
    """Wrapper around the Dataverse Web API (FetchXML, metadata, records).

    Instances hold no per-query state, so independent retrievals may run
    concurrently on the same client.
    """

    config: DataverseConfig
    oauth: TokenProvider

    # Optional httpx transport (tests and mock mode use httpx.MockTransport).
    transport: Optional[httpx.AsyncBaseTransport] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _api_url(self, path: str) -> str:
        api_base = self.config.api_base_url
        if not api_base:
            raise DataverseError(
                "DATAVERSE_URL is not set. "
                "Please configure it before calling the Dataverse Web API."
            )
        return f"{api_base}/{path.lstrip('/')}"

    def _diagnostic(self, message: str, *args: Any) -> None:
        """Per-request diagnostics, promoted to INFO in debug verbosity."""
        if self.config.log_level is LogLevel.DEBUG:
            logger.info(message, *args)
        else:
            logger.debug(message, *args)

    async def _send(
        self,
        method: str,
        url: str,
        extra_headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        token = await self.oauth.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if extra_headers:
            headers.update(extra_headers)

        async with httpx.AsyncClient(
            timeout=float(self.config.http_timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as http_client:
            try:
                response = await http_client.request(
                    method, url, headers=headers, json=json_body
                )
            except httpx.RequestError as exc:
                raise TransportError(
                    f"Request failed: {method} '{url}': {exc}", url=url
                ) from exc

        if not response.is_success:
            raise TransportError(
                f"Dataverse API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
                url=url,
            )

        return response

    async def _get_json(self, url: str, extra_headers: Optional[Dict[str, str]] = None) -> Any:
        response = await self._send("GET", url, extra_headers=extra_headers)
        return load_json(response.text)

    def fetchxml_url(self, entity_set: str, fetchxml_text: str) -> str:
        """Resolved request URL for a FetchXML query against ``entity_set``."""
        encoded = quote(fetchxml_text, safe="")
        return f"{self._api_url(entity_set)}?fetchXml={encoded}"

    def _page_fetcher(self, entity_set: str) -> paging.PageFetcher:
        async def fetch_page(fetchxml_text: str, page: int) -> Any:
            url = self.fetchxml_url(entity_set, fetchxml_text)
            self._diagnostic("Fetch page: %d", page)
            self._diagnostic("FetchXML: %s", fetchxml_text)
            self._diagnostic("Url: %s", url)
            return await self._get_json(url, extra_headers={"Prefer": PREFER_ANNOTATIONS})

        return fetch_page

    # ------------------------------------------------------------------
    # Basic health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Lightweight health check: is an environment URL configured."""
        return bool(self.config.base_url)

    # ------------------------------------------------------------------
    # FetchXML
    # ------------------------------------------------------------------

    async def retrieve_rows(self, entity_set: str, fetchxml_text: str) -> List[Row]:
        """Retrieve every record matched by a FetchXML query.

        Queries with a ``top`` attribute are sent once as-is; all others are
        paged until the service reports no more records. Each returned row
        carries a ``__rownum`` attribute numbered from 1 across all pages.
        """
        return await paging.collect_rows(
            fetchxml_text,
            self._page_fetcher(entity_set),
            aggregate_page_size=self.config.aggregate_page_size,
        )

    async def retrieve_count(self, entity_set: str, fetchxml_text: str) -> int:
        """Count the records matched by a FetchXML query without building rows."""
        return await paging.collect_count(
            fetchxml_text,
            self._page_fetcher(entity_set),
            aggregate_page_size=self.config.aggregate_page_size,
        )

    retrieve_multiple_fetchxml = retrieve_rows
    retrieve_multiple_fetchxml_count = retrieve_count

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_entity_definition(self, logical_name: str) -> EntityDefinition:
        url = self._api_url(f"EntityDefinitions(LogicalName='{_odata_key(logical_name)}')")
        data = await self._get_json(url)
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Unexpected response for entity definition '{logical_name}': "
                f"expected JSON object, got {type(data).__name__}."
            )
        return EntityDefinition.from_api(data)

    async def list_entity_definitions(self) -> List[EntityDefinition]:
        """List all table definitions visible to the caller."""
        url = self._api_url(f"EntityDefinitions?$select={ENTITY_DEFINITION_SELECT}")
        items = _odata_list(await self._get_json(url), "EntityDefinitions")
        return [EntityDefinition.from_api(item) for item in items]

    async def list_entity_attributes(self, logical_name: str) -> List[EntityAttribute]:
        """List readable OData attributes of a table."""
        url = self._api_url(
            f"EntityDefinitions(LogicalName='{_odata_key(logical_name)}')/Attributes"
            f"?$select={ENTITY_ATTRIBUTE_SELECT}&$filter={ENTITY_ATTRIBUTE_FILTER}"
        )
        items = _odata_list(await self._get_json(url), f"Attributes of '{logical_name}'")
        return [EntityAttribute.from_api(item) for item in items]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def update_entity(
        self,
        entity_set: str,
        record_id: str,
        attributes: Dict[str, Any],
    ) -> None:
        url = self._api_url(f"{entity_set}({_record_key(record_id)})")
        await self._send(
            "PATCH",
            url,
            extra_headers={"Content-Type": "application/json"},
            json_body=attributes,
        )

    async def delete_entity(self, entity_set: str, record_id: str) -> None:
        url = self._api_url(f"{entity_set}({_record_key(record_id)})")
        await self._send("DELETE", url)


def _odata_list(data: Any, what: str) -> List[Dict[str, Any]]:
    """Unwrap an OData collection ``{"value": [...]}``."""
    items = data.get("value") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise MalformedResponseError(
            f"Unexpected response when listing {what}: missing 'value' array."
        )
    return [item for item in items if isinstance(item, dict)]
