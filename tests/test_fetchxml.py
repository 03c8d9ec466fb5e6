# Dataverse FetchXML MCP Server
# File: tests/test_fetchxml.py
# Version: v1

"""Tests for the root <fetch> tag editor."""

from __future__ import annotations

import pytest

from dataverse_mcp import fetchxml
from dataverse_mcp.errors import QuerySyntaxError

QUERY = """<fetch mapping="logical">
  <entity name="account">
    <attribute name="name" />
  </entity>
</fetch>"""


# ---------------------------------------------------------------------------
# set_attribute
# ---------------------------------------------------------------------------


def test_set_attribute_inserts_before_closing_bracket() -> None:
    updated = fetchxml.set_attribute(QUERY, "page", "1")

    assert updated.startswith('<fetch mapping="logical" page="1">')
    # Everything after the root tag is untouched.
    assert updated.split(">", 1)[1] == QUERY.split(">", 1)[1]


def test_set_attribute_on_bare_and_self_closing_tags() -> None:
    assert fetchxml.set_attribute("<fetch><entity name='t'/></fetch>", "page", "2") == (
        "<fetch page=\"2\"><entity name='t'/></fetch>"
    )
    assert fetchxml.set_attribute("<fetch/>", "page", "2") == '<fetch page="2"/>'
    assert fetchxml.set_attribute("<fetch top='3' />", "page", "2") == (
        "<fetch top='3' page=\"2\"/>"
    )


def test_set_attribute_replaces_value_keeping_quote_style() -> None:
    query = "<fetch page='7' count=\"50\"><entity name='t'/></fetch>"

    updated = fetchxml.set_attribute(query, "page", "8")
    assert updated == "<fetch page='8' count=\"50\"><entity name='t'/></fetch>"

    updated = fetchxml.set_attribute(updated, "count", "10")
    assert updated == "<fetch page='8' count=\"10\"><entity name='t'/></fetch>"


def test_set_attribute_ignores_names_inside_values_and_child_tags() -> None:
    query = '<fetch mapping="page=1"><entity name="t"><attribute name="page" /></entity></fetch>'

    updated = fetchxml.set_attribute(query, "page", "4")

    assert updated.startswith('<fetch mapping="page=1" page="4">')
    assert '<attribute name="page" />' in updated


def test_closing_bracket_inside_quoted_value_does_not_end_tag() -> None:
    query = '<fetch output-format="a>b"><entity name="t"/></fetch>'
    assert fetchxml.set_attribute(query, "page", "1").startswith(
        '<fetch output-format="a>b" page="1">'
    )


# ---------------------------------------------------------------------------
# Syntax errors
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "query",
    [
        "<foo/>",
        "",
        "<fetchxml top='1'></fetchxml>",
    ],
)
def test_missing_root_tag_is_a_syntax_error(query: str) -> None:
    with pytest.raises(QuerySyntaxError, match="must start with a <fetch>"):
        fetchxml.set_attribute(query, "page", "1")


def test_unclosed_root_tag_is_a_syntax_error() -> None:
    with pytest.raises(QuerySyntaxError, match="not closed"):
        fetchxml.has_attribute('<fetch top="5"', "top")


def test_unquoted_attribute_is_a_syntax_error() -> None:
    with pytest.raises(QuerySyntaxError, match="Invalid fetch attribute 'page'"):
        fetchxml.set_attribute("<fetch page=3><entity name='t'/></fetch>", "page", "4")


@pytest.mark.parametrize(
    "query",
    [
        '<fetch "junk" top="1"><entity name="t"/></fetch>',
        '<fetch top><entity name="t"/></fetch>',
        '<fetch top="1" distinct><entity name="t"/></fetch>',
    ],
)
def test_stray_text_on_root_tag_is_a_syntax_error(query: str) -> None:
    with pytest.raises(QuerySyntaxError, match="Unexpected text in <fetch> element"):
        fetchxml.has_attribute(query, "top")


# ---------------------------------------------------------------------------
# has_attribute / get_attribute
# ---------------------------------------------------------------------------


def test_has_attribute_matches_whole_names_only() -> None:
    query = '<fetch stop="1" distinct="true"><entity name="t"/></fetch>'

    assert fetchxml.has_attribute(query, "distinct") is True
    assert fetchxml.has_attribute(query, "top") is False
    assert fetchxml.has_attribute('<fetch top = "5">', "top") is True


def test_get_attribute_unescapes_value() -> None:
    query = '<fetch paging-cookie="&lt;cookie a=&quot;1&quot;/&gt;">'
    assert fetchxml.get_attribute(query, "paging-cookie") == '<cookie a="1"/>'
    assert fetchxml.get_attribute(query, "page") is None


# ---------------------------------------------------------------------------
# apply_paging
# ---------------------------------------------------------------------------


def test_apply_paging_is_idempotent_for_same_page() -> None:
    once = fetchxml.apply_paging(QUERY, 3, "<cookie/>")
    twice = fetchxml.apply_paging(once, 3, "<cookie/>")

    assert once == twice
    assert twice.count("page=") == 1
    assert twice.count("paging-cookie=") == 1
    assert fetchxml.get_attribute(twice, "page") == "3"


def test_apply_paging_without_cookie_omits_attribute() -> None:
    updated = fetchxml.apply_paging(QUERY, 1)
    assert fetchxml.get_attribute(updated, "page") == "1"
    assert fetchxml.has_attribute(updated, "paging-cookie") is False


def test_apply_paging_escapes_cookie_and_round_trips() -> None:
    cookie = """<cookie page="1"><id last="{A&B}" first='<x>' /></cookie>"""

    updated = fetchxml.apply_paging(QUERY, 2, cookie)

    root_tag = updated.split("\n", 1)[0]
    for raw in ("<cookie", '"1"', "'<x>'", "A&B"):
        assert raw not in root_tag
    assert "&amp;" in root_tag and "&apos;" in root_tag
    assert fetchxml.get_attribute(updated, "paging-cookie") == cookie


def test_apply_paging_rejects_page_zero() -> None:
    with pytest.raises(ValueError):
        fetchxml.apply_paging(QUERY, 0)


def test_escape_xml_attribute_all_special_characters() -> None:
    assert fetchxml.escape_xml_attribute("&<>\"'") == "&amp;&lt;&gt;&quot;&apos;"


# ---------------------------------------------------------------------------
# ensure_aggregate_cap
# ---------------------------------------------------------------------------


AGGREGATE = (
    '<fetch aggregate="true"><entity name="account">'
    '<attribute name="accountid" alias="n" aggregate="count" /></entity></fetch>'
)


def test_aggregate_query_gets_cap_once() -> None:
    capped = fetchxml.ensure_aggregate_cap(AGGREGATE, 5000)

    assert capped.startswith('<fetch aggregate="true" count="5000">')
    assert fetchxml.ensure_aggregate_cap(capped, 5000) == capped
    assert capped.count('count="5000"') == 1


def test_aggregate_query_with_explicit_count_is_unchanged() -> None:
    query = AGGREGATE.replace('aggregate="true"', "aggregate='true' count='20'", 1)
    assert fetchxml.ensure_aggregate_cap(query, 5000) == query


def test_non_aggregate_query_is_unchanged() -> None:
    assert fetchxml.ensure_aggregate_cap(QUERY, 5000) == QUERY
    # The flag on a child <attribute> does not make the query an aggregate one.
    child_only = '<fetch><entity name="t"><attribute name="x" aggregate="count"/></entity></fetch>'
    assert fetchxml.ensure_aggregate_cap(child_only, 5000) == child_only
