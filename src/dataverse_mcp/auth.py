# Dataverse FetchXML MCP Server
# File: auth.py
# Version: v1

"""Bearer-token providers for the Dataverse Web API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import DataverseConfig
from .errors import AuthenticationError

# Refresh a cached token this many seconds before it expires.
REFRESH_SKEW_SECONDS = 300


@dataclass
class StaticTokenProvider:
    """Hands out a token that was acquired elsewhere (e.g. DATAVERSE_ACCESS_TOKEN)."""

    token: str

    async def get_access_token(self) -> str:
        if not self.token:
            raise AuthenticationError("Static access token is empty.")
        return self.token


@dataclass
class OAuthClient:
    """OAuth2 client-credentials flow against Microsoft Entra ID.

    The token is cached in memory together with its expiry and fetched
    again once it is within REFRESH_SKEW_SECONDS of expiring.
    """

    config: DataverseConfig
    transport: Optional[httpx.AsyncBaseTransport] = None
    _cached_token: Optional[str] = None
    _expires_at: Optional[float] = None

    @property
    def token_url(self) -> str:
        return f"{self.config.authority_url}/{self.config.tenant_id}/oauth2/v2.0/token"

    def _is_expiring_soon(self) -> bool:
        if self._expires_at is None:
            return True
        return time.time() + REFRESH_SKEW_SECONDS >= self._expires_at

    async def get_access_token(self) -> str:
        """Return a valid access token, fetching a new one when needed."""
        if self._cached_token and not self._is_expiring_soon():
            return self._cached_token

        if (
            not self.config.tenant_id
            or not self.config.client_id
            or not self.config.client_secret
            or not self.config.effective_scope
        ):
            raise AuthenticationError(
                "OAuth configuration is incomplete. "
                "Set DATAVERSE_URL, DATAVERSE_TENANT_ID, DATAVERSE_CLIENT_ID "
                "and DATAVERSE_CLIENT_SECRET (or DATAVERSE_ACCESS_TOKEN)."
            )

        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": self.config.effective_scope,
            "grant_type": "client_credentials",
        }

        async with httpx.AsyncClient(
            timeout=30.0,
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(self.token_url, data=form)
            except httpx.RequestError as exc:
                raise AuthenticationError(
                    f"Error calling token endpoint '{self.token_url}': {exc}"
                ) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            body_preview = exc.response.text[:500]
            raise AuthenticationError(
                f"Failed to obtain access token from '{self.token_url}' "
                f"(HTTP {status}). Check DATAVERSE_TENANT_ID, "
                "DATAVERSE_CLIENT_ID, DATAVERSE_CLIENT_SECRET and DATAVERSE_SCOPE. "
                f"Response snippet: {body_preview}"
            ) from exc

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise AuthenticationError("Token endpoint did not return JSON.") from exc

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token or not str(token).strip():
            raise AuthenticationError("OAuth token response did not contain 'access_token'")

        expires_in = data.get("expires_in")
        try:
            lifetime = float(expires_in)
        except (TypeError, ValueError) as exc:
            raise AuthenticationError(
                "OAuth token response did not contain a valid 'expires_in'"
            ) from exc

        self._cached_token = str(token)
        self._expires_at = time.time() + lifetime
        return self._cached_token
