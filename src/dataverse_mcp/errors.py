# Dataverse FetchXML MCP Server
# File: errors.py
# Version: v1

"""Exception types raised by the FetchXML query engine and client.

Every error aborts the whole retrieval; no partial row set is returned.
"""

from __future__ import annotations

from typing import Optional


class DataverseError(RuntimeError):
    """Base class for all errors raised by this package."""


class QuerySyntaxError(DataverseError):
    """The FetchXML root tag is missing, unclosed, or has badly quoted attributes.

    Raised locally, before any request is issued.
    """


class TransportError(DataverseError):
    """The HTTP request failed or the service answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.url = url


class MalformedResponseError(DataverseError):
    """A response payload did not have the expected JSON shape."""


class ProtocolInconsistencyError(DataverseError):
    """The service reported more records but supplied no usable paging cookie."""

    def __init__(self, message: str, page: int) -> None:
        super().__init__(message)
        self.page = page


class AuthenticationError(DataverseError):
    """A bearer token could not be obtained."""
