# Dataverse FetchXML MCP Server
# File: mock.py
# Version: v1

"""Small in-memory stand-in for the Dataverse Web API.

Activated when DATAVERSE_MOCK_MODE is truthy, and used by the test-suite.
It is served through ``httpx.MockTransport`` so the real DataverseClient,
paging engine and decoder run unchanged against it.

Paging mirrors the real service: pages hold ``count`` records (default
``page_size``), page N > 1 must carry the paging cookie handed out with
page N - 1, and the cookie annotation is percent-encoded twice.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from . import fetchxml
from .errors import QuerySyntaxError
from .parse import MORE_RECORDS_ANNOTATION, PAGING_COOKIE_ANNOTATION

_DEFINITION_KEY = re.compile(r"^EntityDefinitions\(LogicalName='((?:[^']|'')*)'\)$")
_RECORD_KEY = re.compile(r"^([^()/]+)\(([^()]+)\)$")


@dataclass
class MockTable:
    logical_name: str
    entity_set_name: str
    primary_id_attribute: str
    display_name: str
    rows: List[Dict[str, Any]] = field(default_factory=list)


def default_tables() -> List[MockTable]:
    """Static demo dataset: five accounts and three contacts."""
    return [
        MockTable(
            logical_name="account",
            entity_set_name="accounts",
            primary_id_attribute="accountid",
            display_name="Account",
            rows=[
                {
                    "accountid": f"00000000-0000-0000-0000-00000000000{i}",
                    "name": name,
                    "revenue": revenue,
                    "numberofemployees": employees,
                    "donotemail": i % 2 == 0,
                }
                for i, (name, revenue, employees) in enumerate(
                    [
                        ("Contoso", 1500000.0, 120),
                        ("Fabrikam", 820000.5, 45),
                        ("Adventure Works", None, 300),
                        ("Northwind Traders", 99000.0, 12),
                        ("Tailspin Toys", 455000.0, 58),
                    ],
                    start=1,
                )
            ],
        ),
        MockTable(
            logical_name="contact",
            entity_set_name="contacts",
            primary_id_attribute="contactid",
            display_name="Contact",
            rows=[
                {"contactid": "10000000-0000-0000-0000-000000000001", "fullname": "Nancy Davolio"},
                {"contactid": "10000000-0000-0000-0000-000000000002", "fullname": "Andrew Fuller"},
                {"contactid": "10000000-0000-0000-0000-000000000003", "fullname": "Janet Leverling"},
            ],
        ),
    ]


def _json_response(status_code: int, payload: Any) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


def _error(status_code: int, code: str, message: str) -> httpx.Response:
    return _json_response(status_code, {"error": {"code": code, "message": message}})


def _attribute_type(value: Any) -> str:
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, int):
        return "Integer"
    if isinstance(value, float):
        return "Money"
    return "String"


class MockDataverseService:
    """Request handler emulating the FetchXML and metadata endpoints."""

    def __init__(
        self,
        tables: Optional[List[MockTable]] = None,
        page_size: int = 2,
        api_version: str = "v9.2",
    ) -> None:
        self.tables = {t.entity_set_name: t for t in (tables or default_tables())}
        self.page_size = int(page_size)
        self.api_prefix = f"/api/data/{api_version}/"
        self.requests: List[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def fetch_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if "fetchXml" in r.url.params]

    def _table_by_logical_name(self, logical_name: str) -> Optional[MockTable]:
        for table in self.tables.values():
            if table.logical_name == logical_name:
                return table
        return None

    @staticmethod
    def paging_cookie(table: MockTable, page: int, rows: List[Dict[str, Any]]) -> str:
        key = table.primary_id_attribute
        first = rows[0].get(key) if rows else ""
        last = rows[-1].get(key) if rows else ""
        return (
            f'<cookie page="{page}"><{key} last="{{{last}}}" first="{{{first}}}" /></cookie>'
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return _error(401, "0x80040220", "Missing bearer token.")

        path = request.url.path
        if not path.startswith(self.api_prefix):
            return _error(404, "0x80060888", f"Resource not found: '{path}'.")
        resource = path[len(self.api_prefix):]

        if resource == "EntityDefinitions":
            return self._list_definitions()

        if resource.startswith("EntityDefinitions("):
            head, _, tail = resource.partition("/")
            match = _DEFINITION_KEY.match(head)
            if match is None:
                return _error(400, "0x80060888", f"Bad key segment '{head}'.")
            table = self._table_by_logical_name(match.group(1).replace("''", "'"))
            if table is None:
                return _error(404, "0x80060888", f"Entity '{match.group(1)}' was not found.")
            if tail == "Attributes":
                return self._list_attributes(table)
            return _json_response(200, self._definition_payload(table))

        record = _RECORD_KEY.match(resource)
        if record is not None:
            return self._record_operation(request, record.group(1), record.group(2))

        table = self.tables.get(resource)
        if table is None:
            return _error(
                404, "0x80060888", f"Resource not found for the segment '{resource}'."
            )

        if request.method != "GET" or "fetchXml" not in request.url.params:
            return _error(400, "0x80040203", "Only FetchXML queries are supported.")

        return self._fetch(table, request.url.params["fetchXml"])

    # ------------------------------------------------------------------
    # FetchXML
    # ------------------------------------------------------------------

    def _fetch(self, table: MockTable, query: str) -> httpx.Response:
        try:
            top = fetchxml.get_attribute(query, fetchxml.TOP_ATTRIBUTE)
            page_raw = fetchxml.get_attribute(query, fetchxml.PAGE_ATTRIBUTE)
            count_raw = fetchxml.get_attribute(query, fetchxml.COUNT_ATTRIBUTE)
            cookie = fetchxml.get_attribute(query, fetchxml.PAGING_COOKIE_ATTRIBUTE)
        except QuerySyntaxError as exc:
            return _error(400, "0x80041103", f"Malformed FetchXML: {exc}")

        if top is not None:
            if page_raw is not None:
                return _error(
                    400, "0x80041103", "The top attribute can't be specified with paging attribute page."
                )
            rows = table.rows[: int(top)]
            return _json_response(200, {"value": rows})

        page = int(page_raw or 1)
        size = int(count_raw or self.page_size)

        if page > 1:
            previous = table.rows[(page - 2) * size:(page - 1) * size]
            expected = self.paging_cookie(table, page - 1, previous)
            if cookie != expected:
                return _error(
                    400, "0x80041129", f"Invalid or missing paging cookie for page {page}."
                )

        start = (page - 1) * size
        rows = table.rows[start:start + size]
        more = start + size < len(table.rows)

        payload: Dict[str, Any] = {
            "@odata.context": f"https://mock.crm.dynamics.com{self.api_prefix}$metadata#{table.entity_set_name}",
            "value": rows,
        }
        if more:
            encoded = quote(quote(self.paging_cookie(table, page, rows), safe=""), safe="")
            payload[PAGING_COOKIE_ANNOTATION] = (
                f'<cookie pagenumber="{page + 1}" pagingcookie="{encoded}" istracking="False" />'
            )
            payload[MORE_RECORDS_ANNOTATION] = True
        return _json_response(200, payload)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _definition_payload(self, table: MockTable) -> Dict[str, Any]:
        return {
            "LogicalName": table.logical_name,
            "SchemaName": table.logical_name.capitalize(),
            "EntitySetName": table.entity_set_name,
            "IsCustomEntity": False,
            "PrimaryIdAttribute": table.primary_id_attribute,
            "DisplayName": {
                "UserLocalizedLabel": {"Label": table.display_name, "LanguageCode": 1033}
            },
        }

    def _list_definitions(self) -> httpx.Response:
        items = [self._definition_payload(t) for t in self.tables.values()]
        return _json_response(200, {"value": items})

    def _list_attributes(self, table: MockTable) -> httpx.Response:
        columns: Dict[str, Any] = {}
        for row in table.rows:
            for key, value in row.items():
                if columns.get(key) is None:
                    columns[key] = value

        items = []
        for name, sample in columns.items():
            items.append(
                {
                    "LogicalName": name,
                    "SchemaName": name.capitalize(),
                    "AttributeType": "Uniqueidentifier"
                    if name == table.primary_id_attribute
                    else _attribute_type(sample),
                    "IsCustomAttribute": False,
                    "IsValidODataAttribute": True,
                    "IsValidForRead": True,
                    "IsValidForUpdate": name != table.primary_id_attribute,
                }
            )
        return _json_response(200, {"value": items})

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _record_operation(
        self, request: httpx.Request, entity_set: str, record_id: str
    ) -> httpx.Response:
        table = self.tables.get(entity_set)
        if table is None:
            return _error(404, "0x80060888", f"Resource not found for the segment '{entity_set}'.")

        key = table.primary_id_attribute
        for index, row in enumerate(table.rows):
            if row.get(key) != record_id:
                continue
            if request.method == "PATCH":
                changes = json.loads(request.content or b"{}")
                row.update(changes)
                return httpx.Response(204)
            if request.method == "DELETE":
                del table.rows[index]
                return httpx.Response(204)
            return _error(405, "0x80060888", f"Method {request.method} not allowed.")

        return _error(
            404, "0x80040217", f"{table.logical_name} With Id = {record_id} Does Not Exist"
        )
