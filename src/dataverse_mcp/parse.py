# Dataverse FetchXML MCP Server
# File: parse.py
# Version: v1

"""Decoding of Dataverse Web API list responses into typed rows.

A FetchXML page looks like::

    {
      "@odata.context": "...",
      "@Microsoft.Dynamics.CRM.fetchxmlpagingcookie": "<cookie pagenumber=\\"2\\" pagingcookie=\\"%253ccookie...\\" />",
      "@Microsoft.Dynamics.CRM.morerecords": true,
      "value": [{"accountid": "...", "name": "Contoso"}, ...]
    }
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from .errors import MalformedResponseError
from .models import PageResult, Row, ScalarValue

logger = logging.getLogger(__name__)

MORE_RECORDS_ANNOTATION = "@Microsoft.Dynamics.CRM.morerecords"
PAGING_COOKIE_ANNOTATION = "@Microsoft.Dynamics.CRM.fetchxmlpagingcookie"

_PAGING_COOKIE_KEY = 'pagingcookie="'

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class _Skip:
    """Marker for JSON values that have no scalar representation."""


_SKIP = _Skip()


def coerce_value(value: Any) -> Any:
    """Map one decoded JSON value onto the closed scalar value set.

    Matching order is fixed: null, boolean, integer, float, string.
    Booleans are tested before integers because ``bool`` is an ``int``
    subclass in Python. Integers outside the signed 64-bit range (unsigned
    64-bit values above it, or anything larger) become floats, which may
    lose precision. Objects and arrays return the ``_SKIP`` marker.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if _INT64_MIN <= value <= _INT64_MAX:
            return value
        return float(value)
    if isinstance(value, float):
        return value
    if isinstance(value, str):
        return value
    return _SKIP


def load_json(text: str) -> Any:
    """Parse a response body, turning JSON syntax errors into MalformedResponseError."""
    try:
        return json.loads(text)
    except ValueError as exc:
        raise MalformedResponseError(
            f"Invalid response from Dataverse: body is not valid JSON ({exc})"
        ) from exc


def _record_list(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            "Invalid response from Dataverse: expected a JSON object, "
            f"got {type(payload).__name__}."
        )

    records = payload.get("value")
    if not isinstance(records, list):
        raise MalformedResponseError(
            "Invalid response from Dataverse: missing 'value' array."
        )

    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise MalformedResponseError(
                "Invalid response from Dataverse: record "
                f"{index} is {type(record).__name__}, expected an object."
            )

    return records


def parse_rows(payload: Any) -> List[Row]:
    """Build one Row per element of the payload's ``value`` array."""
    rows: List[Row] = []
    for record in _record_list(payload):
        attributes: Dict[str, ScalarValue] = {}
        for key, raw_value in record.items():
            value = coerce_value(raw_value)
            if value is _SKIP:
                logger.debug(
                    "Skipping non-scalar attribute %r (%s)",
                    key,
                    type(raw_value).__name__,
                )
                continue
            attributes[key] = value
        rows.append(Row(attributes=attributes))
    return rows


def parse_record_count(payload: Any) -> int:
    """Number of records in the page, without building Row objects."""
    return len(_record_list(payload))


def parse_more_records(payload: Any) -> bool:
    """True only for a boolean ``true`` or a case-insensitive ``"true"`` string."""
    if not isinstance(payload, dict):
        return False

    flag = payload.get(MORE_RECORDS_ANNOTATION)
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, str):
        return flag.lower() == "true"
    return False


def extract_paging_cookie(payload: Any) -> Optional[str]:
    """Pull the ``pagingcookie="..."`` fragment out of the cookie annotation.

    The service percent-encodes the cookie twice, so it is decoded twice.
    Returns None when the annotation or the fragment is absent, or when
    the decoded bytes are not valid UTF-8.
    """
    if not isinstance(payload, dict):
        return None

    cookie_element = payload.get(PAGING_COOKIE_ANNOTATION)
    if not isinstance(cookie_element, str):
        return None

    start = cookie_element.find(_PAGING_COOKIE_KEY)
    if start < 0:
        return None
    start += len(_PAGING_COOKIE_KEY)

    end = cookie_element.find('"', start)
    if end < 0:
        return None

    try:
        once = unquote(cookie_element[start:end], errors="strict")
        return unquote(once, errors="strict")
    except UnicodeDecodeError:
        logger.debug("Paging cookie is not valid UTF-8 after percent-decoding")
        return None


def decode_page(payload: Any, materialize: bool = True) -> PageResult:
    """Decode one page.

    With ``materialize=False`` only the record count is computed (rows is
    empty); the payload shape is still validated exactly as for rows.
    """
    if materialize:
        rows = parse_rows(payload)
        count = len(rows)
    else:
        rows = []
        count = parse_record_count(payload)

    return PageResult(
        rows=rows,
        count=count,
        more_records=parse_more_records(payload),
        cursor=extract_paging_cookie(payload),
    )
