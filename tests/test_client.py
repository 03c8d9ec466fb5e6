# Dataverse FetchXML MCP Server
# File: tests/test_client.py
# Version: v1

"""End-to-end tests for DataverseClient over httpx.MockTransport.

No real Dataverse environment is contacted: requests are served either by
MockDataverseService or by small inline handlers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, List
from urllib.parse import quote

import httpx
import pytest

from dataverse_mcp import fetchxml
from dataverse_mcp.auth import StaticTokenProvider
from dataverse_mcp.client import PREFER_ANNOTATIONS, DataverseClient
from dataverse_mcp.config import DataverseConfig, LogLevel
from dataverse_mcp.errors import (
    MalformedResponseError,
    ProtocolInconsistencyError,
    QuerySyntaxError,
    TransportError,
)
from dataverse_mcp.mock import MockDataverseService
from dataverse_mcp.parse import MORE_RECORDS_ANNOTATION, PAGING_COOKIE_ANNOTATION

BASE_URL = "https://org.crm.dynamics.com/"

ACCOUNTS = """<fetch>
  <entity name="account">
    <attribute name="accountid" />
    <attribute name="name" />
  </entity>
</fetch>"""


def _run(coro):
    """Helper to run async coroutines in plain pytest tests."""
    return asyncio.run(coro)


def _client(transport: httpx.AsyncBaseTransport, **overrides: Any) -> DataverseClient:
    config = DataverseConfig(url=BASE_URL, **overrides)
    return DataverseClient(config=config, oauth=StaticTokenProvider("t0k3n"), transport=transport)


class _Recorder:
    """Inline handler that answers with scripted responses and keeps requests."""

    def __init__(self, responses: List[Callable[[httpx.Request], httpx.Response]]) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _json(payload: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


def _annotated(rows: List[Any], cookie: str | None = None) -> dict:
    payload: dict = {"value": rows}
    if cookie is not None:
        encoded = quote(quote(cookie, safe=""), safe="")
        payload[PAGING_COOKIE_ANNOTATION] = f'<cookie pagenumber="2" pagingcookie="{encoded}" />'
        payload[MORE_RECORDS_ANNOTATION] = True
    return payload


# ---------------------------------------------------------------------------
# Scenario from the FetchXML paging protocol
# ---------------------------------------------------------------------------


def test_two_page_scenario_rows_and_count() -> None:
    query = '<fetch><entity name="t"/></fetch>'

    def fresh_recorder() -> _Recorder:
        return _Recorder(
            [
                _json(_annotated([{"id": 1}, {"id": 2}], cookie="AB")),
                _json({"value": [{"id": 3}], MORE_RECORDS_ANNOTATION: "false"}),
            ]
        )

    rows_recorder = fresh_recorder()
    rows = _run(_client(rows_recorder.transport()).retrieve_rows("ts", query))

    assert [r["__rownum"] for r in rows] == [1, 2, 3]
    assert [r["id"] for r in rows] == [1, 2, 3]

    count_recorder = fresh_recorder()
    count = _run(_client(count_recorder.transport()).retrieve_count("ts", query))
    assert count == 3

    second = rows_recorder.requests[1].url.params["fetchXml"]
    assert fetchxml.get_attribute(second, "page") == "2"
    assert fetchxml.get_attribute(second, "paging-cookie") == "AB"

    assert [str(r.url) for r in rows_recorder.requests] == [
        str(r.url) for r in count_recorder.requests
    ]


def test_request_url_and_headers() -> None:
    recorder = _Recorder([_json({"value": []})])
    client = _client(recorder.transport())

    _run(client.retrieve_rows("accounts", ACCOUNTS))

    (request,) = recorder.requests
    assert request.method == "GET"
    assert request.url.path == "/api/data/v9.2/accounts"
    assert request.headers["Authorization"] == "Bearer t0k3n"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["Prefer"] == PREFER_ANNOTATIONS

    sent = request.url.params["fetchXml"]
    assert sent == fetchxml.apply_paging(ACCOUNTS, 1)


def test_fetchxml_url_is_fully_percent_encoded() -> None:
    client = _client(httpx.MockTransport(lambda r: httpx.Response(200)))

    url = client.fetchxml_url("accounts", '<fetch top="1"/>')

    assert url == (
        "https://org.crm.dynamics.com/api/data/v9.2/accounts"
        "?fetchXml=%3Cfetch%20top%3D%221%22%2F%3E"
    )


def test_mock_service_paging_end_to_end() -> None:
    service = MockDataverseService(page_size=2)
    client = _client(service.transport())

    rows = _run(client.retrieve_rows("accounts", ACCOUNTS))
    count = _run(client.retrieve_count("accounts", ACCOUNTS))

    assert len(rows) == count == 5
    assert [r.row_number for r in rows] == [1, 2, 3, 4, 5]
    assert rows[0]["name"] == "Contoso"
    assert rows[2]["revenue"] is None
    assert type(rows[0]["numberofemployees"]) is int
    # 3 pages for rows + 3 pages for count
    assert len(service.fetch_requests) == 6


def test_top_query_issues_one_request_regardless_of_size() -> None:
    service = MockDataverseService(page_size=1)
    client = _client(service.transport())
    query = ACCOUNTS.replace("<fetch>", '<fetch top="3">')

    rows = _run(client.retrieve_rows("accounts", query))

    assert len(rows) == 3
    assert len(service.fetch_requests) == 1
    assert service.fetch_requests[0].url.params["fetchXml"] == query


def test_concurrent_independent_retrievals() -> None:
    service = MockDataverseService(page_size=2)
    client = _client(service.transport())
    contacts = ACCOUNTS.replace("account", "contact")

    async def both():
        return await asyncio.gather(
            client.retrieve_rows("accounts", ACCOUNTS),
            client.retrieve_rows("contacts", contacts),
        )

    accounts_rows, contact_rows = _run(both())

    assert [r.row_number for r in accounts_rows] == [1, 2, 3, 4, 5]
    assert [r.row_number for r in contact_rows] == [1, 2, 3]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_malformed_payload_stops_after_first_request() -> None:
    recorder = _Recorder([_json({"notvalue": []}), _json({"value": []})])

    with pytest.raises(MalformedResponseError):
        _run(_client(recorder.transport()).retrieve_rows("ts", ACCOUNTS))

    assert len(recorder.requests) == 1


def test_non_json_body_is_malformed() -> None:
    recorder = _Recorder([lambda r: httpx.Response(200, text="<html/>")])

    with pytest.raises(MalformedResponseError):
        _run(_client(recorder.transport()).retrieve_count("ts", ACCOUNTS))


def test_missing_root_tag_fails_before_network() -> None:
    recorder = _Recorder([])

    with pytest.raises(QuerySyntaxError):
        _run(_client(recorder.transport()).retrieve_rows("ts", "<foo/>"))
    with pytest.raises(QuerySyntaxError):
        _run(_client(recorder.transport()).retrieve_count("ts", "<foo/>"))

    assert recorder.requests == []


def test_http_error_carries_status_and_body() -> None:
    body = {"error": {"code": "0x80040220", "message": "Principal user is missing prvReadAccount"}}
    recorder = _Recorder([_json(body, status_code=403)])

    with pytest.raises(TransportError) as excinfo:
        _run(_client(recorder.transport()).retrieve_rows("accounts", ACCOUNTS))

    err = excinfo.value
    assert err.status_code == 403
    assert json.loads(err.body) == body
    assert "prvReadAccount" in str(err)
    assert len(recorder.requests) == 1


def test_network_failure_is_transport_error() -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as excinfo:
        _run(_client(httpx.MockTransport(boom)).retrieve_count("accounts", ACCOUNTS))

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_protocol_inconsistency_surfaces_from_client() -> None:
    recorder = _Recorder(
        [_json({"value": [{"a": 1}], MORE_RECORDS_ANNOTATION: True}), _json({"value": []})]
    )

    with pytest.raises(ProtocolInconsistencyError):
        _run(_client(recorder.transport()).retrieve_rows("ts", ACCOUNTS))
    assert len(recorder.requests) == 1


def test_missing_url_raises() -> None:
    client = DataverseClient(
        config=DataverseConfig(url=None),
        oauth=StaticTokenProvider("x"),
        transport=httpx.MockTransport(lambda r: httpx.Response(200)),
    )
    with pytest.raises(RuntimeError, match="DATAVERSE_URL is not set"):
        _run(client.retrieve_rows("accounts", ACCOUNTS))


# ---------------------------------------------------------------------------
# Diagnostics logging
# ---------------------------------------------------------------------------


def test_debug_verbosity_logs_page_query_and_url(caplog) -> None:
    service = MockDataverseService(page_size=3)
    client = _client(service.transport(), log_level=LogLevel.DEBUG)

    with caplog.at_level(logging.INFO, logger="dataverse_mcp.client"):
        _run(client.retrieve_rows("contacts", ACCOUNTS.replace("account", "contact")))

    messages = [r.getMessage() for r in caplog.records if r.name == "dataverse_mcp.client"]
    assert "Fetch page: 1" in messages
    assert any(m.startswith("FetchXML: <fetch page=\"1\">") for m in messages)
    assert any(m.startswith("Url: https://org.crm.dynamics.com/api/data/v9.2/contacts?fetchXml=") for m in messages)


def test_information_verbosity_keeps_diagnostics_at_debug(caplog) -> None:
    service = MockDataverseService()
    client = _client(service.transport())

    with caplog.at_level(logging.INFO, logger="dataverse_mcp.client"):
        _run(client.retrieve_count("contacts", ACCOUNTS.replace("account", "contact")))

    assert [r for r in caplog.records if r.name == "dataverse_mcp.client"] == []


# ---------------------------------------------------------------------------
# Metadata & records
# ---------------------------------------------------------------------------


def test_list_entity_definitions_and_attributes() -> None:
    service = MockDataverseService()
    client = _client(service.transport())

    definitions = _run(client.list_entity_definitions())
    by_name = {d.logical_name: d for d in definitions}
    assert by_name["account"].entity_set_name == "accounts"
    assert by_name["account"].display_name == "Account"
    assert by_name["contact"].primary_id_attribute == "contactid"

    select = service.requests[0].url.params["$select"]
    assert select.startswith("LogicalName,SchemaName")

    attributes = _run(client.list_entity_attributes("account"))
    names = {a.logical_name: a for a in attributes}
    assert names["accountid"].attribute_type == "Uniqueidentifier"
    assert names["accountid"].is_valid_for_update is False
    assert names["donotemail"].attribute_type == "Boolean"

    request = service.requests[-1]
    assert request.url.params["$filter"] == "IsValidODataAttribute eq true and IsValidForRead eq true"


def test_get_entity_definition_escapes_quotes() -> None:
    recorder = _Recorder([_json({"LogicalName": "o'brien", "SchemaName": "OBrien", "EntitySetName": "obriens"})])

    definition = _run(_client(recorder.transport()).get_entity_definition("o'brien"))

    assert definition.entity_set_name == "obriens"
    assert recorder.requests[0].url.path.endswith("EntityDefinitions(LogicalName='o''brien')")


def test_update_and_delete_entity() -> None:
    service = MockDataverseService()
    client = _client(service.transport())
    record_id = "10000000-0000-0000-0000-000000000002"

    _run(client.update_entity("contacts", "{" + record_id + "}", {"fullname": "Andy Fuller"}))
    patch = service.requests[-1]
    assert patch.method == "PATCH"
    assert patch.url.path.endswith(f"/contacts({record_id})")
    assert json.loads(patch.content) == {"fullname": "Andy Fuller"}

    _run(client.delete_entity("contacts", record_id))
    assert _run(client.retrieve_count("contacts", ACCOUNTS.replace("account", "contact"))) == 2

    with pytest.raises(TransportError) as excinfo:
        _run(client.delete_entity("contacts", record_id))
    assert excinfo.value.status_code == 404
