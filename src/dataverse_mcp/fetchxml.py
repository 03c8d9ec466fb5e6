# Dataverse FetchXML MCP Server
# File: fetchxml.py
# Version: v1

"""Text-level editing of the root ``<fetch>`` tag of a FetchXML query.

This is deliberately NOT a general-purpose XML editor. It only locates the
root ``<fetch ...>`` tag and reads or rewrites attributes on it, leaving the
rest of the caller's document (formatting, whitespace, comments) byte for
byte intact. Do not reuse it for arbitrary XML.

Public helpers:

- has_attribute() / get_attribute() for inspecting the root tag
- set_attribute() to insert or replace a root tag attribute
- apply_paging() to carry the page number and paging cookie forward
- ensure_aggregate_cap() to bound aggregate queries to an explicit page size
"""

from __future__ import annotations

import re
from typing import Iterator, Optional, Tuple
from xml.sax.saxutils import escape, unescape

from .errors import QuerySyntaxError

ROOT_TAG = "fetch"

TOP_ATTRIBUTE = "top"
PAGE_ATTRIBUTE = "page"
PAGING_COOKIE_ATTRIBUTE = "paging-cookie"
AGGREGATE_ATTRIBUTE = "aggregate"
COUNT_ATTRIBUTE = "count"

_ATTRIBUTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_ATTRIBUTE_ENTITIES_REVERSED = {v: k for k, v in _ATTRIBUTE_ENTITIES.items()}

_ROOT_OPEN = re.compile(r"<" + ROOT_TAG + r"(?=[\s/>])")
_ATTRIBUTE_NAME = re.compile(r"([^\s=/>\"']+)\s*=\s*")
_WHITESPACE = re.compile(r"\s*")


def escape_xml_attribute(value: str) -> str:
    """Escape ``& < > " '`` for use inside a quoted XML attribute value."""
    return escape(value, _ATTRIBUTE_ENTITIES)


def unescape_xml_attribute(value: str) -> str:
    return unescape(value, _ATTRIBUTE_ENTITIES_REVERSED)


def _locate_root_tag(query: str) -> Tuple[int, int]:
    """Return (start, end) indexes of the root tag: ``query[start:end + 1]``.

    ``end`` points at the closing ``>``. A ``>`` inside a quoted attribute
    value does not close the tag.
    """
    match = _ROOT_OPEN.search(query)
    if match is None:
        raise QuerySyntaxError("FetchXML must start with a <fetch> element")

    quote: Optional[str] = None
    for index in range(match.end(), len(query)):
        char = query[index]
        if quote is not None:
            if char == quote:
                quote = None
        elif char in ('"', "'"):
            quote = char
        elif char == ">":
            return match.start(), index

    raise QuerySyntaxError("FetchXML <fetch> element is not closed")


def _iter_attributes(query: str, start: int, end: int) -> Iterator[Tuple[str, int, int]]:
    """Yield (name, value_start, value_end) for each attribute on the root tag.

    Offsets are absolute positions in ``query``; ``query[value_start:value_end]``
    is the raw (still escaped) value between the quotes.
    """
    position = start + 1 + len(ROOT_TAG)
    while True:
        position = _WHITESPACE.match(query, position, end).end()
        rest = query[position:end]
        if rest in ("", "/"):
            return

        # Anything other than name="value" pairs on the root tag is rejected.
        match = _ATTRIBUTE_NAME.match(query, position, end)
        if match is None:
            raise QuerySyntaxError(f"Unexpected text in <fetch> element: '{rest.strip()}'")

        name = match.group(1)
        quote_index = match.end()
        quote = query[quote_index] if quote_index < end else ""
        if quote not in ('"', "'"):
            raise QuerySyntaxError(f"Invalid fetch attribute '{name}'")

        value_end = query.find(quote, quote_index + 1, end)
        if value_end < 0:
            raise QuerySyntaxError(f"Invalid fetch attribute '{name}'")

        yield name, quote_index + 1, value_end
        position = value_end + 1


def _find_attribute(query: str, name: str) -> Tuple[int, int, Optional[Tuple[int, int]]]:
    start, end = _locate_root_tag(query)
    span = None
    for attr_name, value_start, value_end in _iter_attributes(query, start, end):
        if attr_name == name and span is None:
            span = (value_start, value_end)
    return start, end, span


def has_attribute(query: str, name: str) -> bool:
    """True when the root ``<fetch>`` tag carries attribute ``name``."""
    _, _, span = _find_attribute(query, name)
    return span is not None


def get_attribute(query: str, name: str) -> Optional[str]:
    """Return the unescaped value of a root tag attribute, or None."""
    _, _, span = _find_attribute(query, name)
    if span is None:
        return None
    return unescape_xml_attribute(query[span[0]:span[1]])


def set_attribute(query: str, name: str, value: str) -> str:
    """Return ``query`` with ``name`` set to ``value`` on the root tag.

    An existing attribute keeps its position and quote character; only its
    value is replaced. A missing attribute is appended as ``name="value"``
    just before the tag's closing ``>`` (or ``/>``). ``value`` is inserted
    verbatim, so callers must escape it first.
    """
    _, end, span = _find_attribute(query, name)
    if span is not None:
        value_start, value_end = span
        return query[:value_start] + value + query[value_end:]

    insert_at = end
    while insert_at > 0 and query[insert_at - 1] == "/":
        insert_at -= 1
    # Keep "<fetch/>" well-formed: "<fetch page="1"/>"
    separator = "" if query[insert_at - 1].isspace() else " "
    return f'{query[:insert_at]}{separator}{name}="{value}"{query[insert_at:]}'


def apply_paging(query: str, page: int, paging_cookie: Optional[str] = None) -> str:
    """Set the page number and, when given, the escaped paging cookie."""
    if page < 1:
        raise ValueError(f"FetchXML page numbers start at 1, got {page}")

    updated = set_attribute(query, PAGE_ATTRIBUTE, str(page))
    if paging_cookie is not None:
        updated = set_attribute(
            updated, PAGING_COOKIE_ATTRIBUTE, escape_xml_attribute(paging_cookie)
        )
    return updated


def is_aggregate(query: str) -> bool:
    value = get_attribute(query, AGGREGATE_ATTRIBUTE)
    return value is not None and value.strip().lower() in {"true", "1"}


def ensure_aggregate_cap(query: str, page_size: int) -> str:
    """Give an aggregate query an explicit ``count`` when it has none.

    Non-aggregate queries and aggregate queries that already set ``count``
    are returned unchanged.
    """
    if not is_aggregate(query):
        return query
    if has_attribute(query, COUNT_ATTRIBUTE):
        return query
    return set_attribute(query, COUNT_ATTRIBUTE, str(int(page_size)))
