# Dataverse FetchXML MCP Server
# File: paging.py
# Version: v1

"""Paging state machine shared by row and count retrievals.

A retrieval runs in one of two modes, decided once from the query text:

- SINGLE_SHOT: the query has a ``top`` attribute. Dataverse does not allow
  paging together with ``top``, so exactly one request is issued.
- PAGED: the query is sent with ``page`` / ``paging-cookie`` attributes,
  page after page, until the service stops reporting more records.

Both ``collect_rows`` and ``collect_count`` consume ``iter_pages`` so they
always agree on how many pages exist and how many records each holds.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from . import fetchxml
from .config import DEFAULT_AGGREGATE_PAGE_SIZE
from .errors import ProtocolInconsistencyError
from .models import ROW_NUMBER_ATTRIBUTE, PageResult, Row
from .parse import decode_page

logger = logging.getLogger(__name__)

# fetch_page(fetchxml_text, page_number) -> decoded JSON payload
PageFetcher = Callable[[str, int], Awaitable[Any]]


class RetrievalMode(str, Enum):
    SINGLE_SHOT = "single_shot"
    PAGED = "paged"


def resolve_mode(query: str) -> RetrievalMode:
    """Pick the retrieval mode; raises QuerySyntaxError for a bad root tag."""
    if fetchxml.has_attribute(query, fetchxml.TOP_ATTRIBUTE):
        return RetrievalMode.SINGLE_SHOT
    return RetrievalMode.PAGED


async def iter_pages(
    query: str,
    fetch_page: PageFetcher,
    materialize: bool = True,
    aggregate_page_size: int = DEFAULT_AGGREGATE_PAGE_SIZE,
) -> AsyncIterator[PageResult]:
    """Yield each decoded page of a retrieval in order.

    The query is validated and normalised before the first request, so a
    malformed root tag never reaches the network. Any error (transport,
    decoding, protocol) propagates and ends the iteration.
    """
    mode = resolve_mode(query)
    base_query = fetchxml.ensure_aggregate_cap(query, aggregate_page_size)

    if mode is RetrievalMode.SINGLE_SHOT:
        payload = await fetch_page(base_query, 1)
        yield decode_page(payload, materialize=materialize)
        return

    page = 1
    cursor: Optional[str] = None
    while True:
        paged_query = fetchxml.apply_paging(base_query, page, cursor)
        payload = await fetch_page(paged_query, page)
        result = decode_page(payload, materialize=materialize)

        yield result

        if not result.more_records:
            return

        if result.cursor is None:
            raise ProtocolInconsistencyError(
                f"Dataverse reported more records after page {page} "
                "but returned no paging cookie.",
                page=page,
            )

        cursor = result.cursor
        page += 1


async def collect_rows(
    query: str,
    fetch_page: PageFetcher,
    aggregate_page_size: int = DEFAULT_AGGREGATE_PAGE_SIZE,
) -> List[Row]:
    """Accumulate every row of a retrieval, numbering them from 1."""
    rows: List[Row] = []
    async for result in iter_pages(
        query,
        fetch_page,
        materialize=True,
        aggregate_page_size=aggregate_page_size,
    ):
        start_index = len(rows)
        for offset, row in enumerate(result.rows):
            row.attributes[ROW_NUMBER_ATTRIBUTE] = start_index + offset + 1
        rows.extend(result.rows)
    return rows


async def collect_count(
    query: str,
    fetch_page: PageFetcher,
    aggregate_page_size: int = DEFAULT_AGGREGATE_PAGE_SIZE,
) -> int:
    """Sum the record counts of every page without materialising rows."""
    total = 0
    async for result in iter_pages(
        query,
        fetch_page,
        materialize=False,
        aggregate_page_size=aggregate_page_size,
    ):
        total += result.count
    return total
