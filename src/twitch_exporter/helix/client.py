"""Async client for the Twitch Helix and OAuth APIs.

Token types:

- App access token: client-credentials grant.  Identifies the exporter
  itself and is enough for public data (channel search, streams, users).
- User access token: authorization-code grant, refreshable.  Required for
  subscriber and follower totals.

The client is stateless with respect to tokens: every Helix call receives the
bearer token to use, read by the caller from the credential manager right
before the call batch.  Token lifecycle decisions live in
:mod:`twitch_exporter.core.credentials`.

Transport failures and non-success HTTP statuses are both raised as
:class:`~twitch_exporter.core.exceptions.UpstreamError`; ``status_code`` is
``None`` when no response was received.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from twitch_exporter.core.exceptions import (
    TokenAcquisitionError,
    UpstreamError,
    UpstreamTimeoutError,
)
from twitch_exporter.helix.config import (
    AUTHORIZATION_STATE,
    DEFAULT_TIMEOUT,
    TWITCH_API_BASE,
    TWITCH_AUTHORIZE_URL,
    TWITCH_TOKEN_URL,
    TWITCH_VALIDATE_URL,
    USER_AGENT,
    USER_TOKEN_SCOPES,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by the OAuth token endpoint.

    Attributes:
        access_token: The new access token.
        expires_in: Declared lifetime in seconds (``0`` if not reported).
        refresh_token: Refresh token for user tokens, ``None`` for app tokens.
    """

    access_token: str
    expires_in: int = 0
    refresh_token: str | None = None


@dataclass(frozen=True)
class TokenValidation:
    """Response of ``GET oauth2/validate`` for a valid token."""

    client_id: str
    login: str | None
    user_id: str | None
    scopes: tuple[str, ...]
    expires_in: int


class HelixClient:
    """Thin async wrapper around the Twitch Helix and OAuth endpoints.

    A single :class:`httpx.AsyncClient` is shared across requests for
    connection reuse; its timeout bounds every upstream call.

    Args:
        client_id: Twitch application client ID.
        client_secret: Twitch application client secret.
        redirect_uri: OAuth redirect URI, used for the authorization URL and
            the authorization-code exchange.
        timeout: Per-request timeout in seconds.
        http_client: Optional injected :class:`httpx.AsyncClient` for testing.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("Twitch client_id and client_secret are required")

        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT},
        )

    async def aclose(self) -> None:
        """Close the shared HTTP client.  Call on app shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        endpoint: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Issue a request and return the decoded JSON body.

        Raises:
            UpstreamTimeoutError: If the request exceeds the client timeout.
            UpstreamError: On any other transport error or non-2xx status.
        """
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(
                f"timeout calling {endpoint}: {exc!r}", endpoint=endpoint
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"connection error calling {endpoint}: {exc!r}", endpoint=endpoint
            ) from exc

        if not response.is_success:
            logger.debug(
                "Twitch %s returned HTTP %d: %s",
                endpoint,
                response.status_code,
                response.text[:200],
            )
            raise UpstreamError(
                _error_message(response),
                status_code=response.status_code,
                endpoint=endpoint,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"invalid JSON from {endpoint}",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamError(
                f"unexpected payload from {endpoint}: expected a JSON object",
                status_code=response.status_code,
                endpoint=endpoint,
            )
        return body

    def _helix_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def _helix_get(
        self,
        path: str,
        params: dict[str, Any],
        *,
        token: str,
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{TWITCH_API_BASE}{path}",
            endpoint=path,
            params=params,
            headers=self._helix_headers(token),
        )

    async def _token_request(self, data: dict[str, str]) -> TokenGrant:
        grant_type = data["grant_type"]
        body = await self._request(
            "POST",
            TWITCH_TOKEN_URL,
            endpoint=f"oauth2/token ({grant_type})",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                **data,
            },
        )
        access_token = body.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise TokenAcquisitionError(
                "token response missing 'access_token' field", grant_type=grant_type
            )
        refresh_token = body.get("refresh_token") or None
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenAcquisitionError(
                "token response has a malformed 'refresh_token' field", grant_type=grant_type
            )
        try:
            expires_in = int(body.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise TokenAcquisitionError(
                f"token response has a malformed 'expires_in' field: {body.get('expires_in')!r}",
                grant_type=grant_type,
            ) from exc
        return TokenGrant(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=refresh_token,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(
        self,
        scopes: tuple[str, ...] = USER_TOKEN_SCOPES,
        state: str = AUTHORIZATION_STATE,
        force_verify: bool = False,
    ) -> str:
        """Build the user authorization URL for the authorization-code flow."""
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": " ".join(scopes),
                "state": state,
                "force_verify": "true" if force_verify else "false",
            }
        )
        return f"{TWITCH_AUTHORIZE_URL}?{query}"

    async def request_app_token(self) -> TokenGrant:
        """Mint an app access token via the client-credentials grant."""
        return await self._token_request({"grant_type": "client_credentials"})

    async def request_user_token(self, code: str) -> TokenGrant:
        """Exchange an authorization code for a user access/refresh token pair."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh_user_token(self, refresh_token: str) -> TokenGrant:
        """Refresh a user access token.

        Twitch may rotate the refresh token; when the response omits it the
        previous one is kept.
        """
        grant = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        if grant.refresh_token is None:
            return TokenGrant(
                access_token=grant.access_token,
                expires_in=grant.expires_in,
                refresh_token=refresh_token,
            )
        return grant

    async def validate_token(self, token: str) -> TokenValidation:
        """Introspect *token*.

        Raises:
            UpstreamError: With ``status_code=401`` when Twitch rejects the
                token, or any other status/transport failure.
        """
        body = await self._request(
            "GET",
            TWITCH_VALIDATE_URL,
            endpoint="oauth2/validate",
            headers={"Authorization": f"OAuth {token}"},
        )
        try:
            return TokenValidation(
                client_id=str(body.get("client_id", "")),
                login=body.get("login"),
                user_id=body.get("user_id"),
                scopes=tuple(body.get("scopes") or ()),
                expires_in=int(body.get("expires_in") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise UpstreamError(
                "malformed token validation response",
                status_code=200,
                endpoint="oauth2/validate",
            ) from exc

    # ------------------------------------------------------------------
    # Helix data endpoints
    # ------------------------------------------------------------------

    async def search_channels(self, query: str, *, token: str) -> list[dict[str, Any]]:
        """``GET /search/channels`` — channels matching *query*."""
        body = await self._helix_get("/search/channels", {"query": query}, token=token)
        return list(body.get("data") or [])

    async def get_streams(self, user_logins: list[str], *, token: str) -> list[dict[str, Any]]:
        """``GET /streams`` — live streams for the given logins."""
        body = await self._helix_get("/streams", {"user_login": user_logins}, token=token)
        return list(body.get("data") or [])

    async def get_users(self, logins: list[str], *, token: str) -> list[dict[str, Any]]:
        """``GET /users`` — user records for the given logins."""
        body = await self._helix_get("/users", {"login": logins}, token=token)
        return list(body.get("data") or [])

    async def get_subscriptions(
        self, broadcaster_id: str, *, token: str, first: int = 1
    ) -> dict[str, Any]:
        """``GET /subscriptions`` — full payload, including ``total``.

        Requires a user token with ``channel:read:subscriptions``.
        """
        return await self._helix_get(
            "/subscriptions",
            {"broadcaster_id": broadcaster_id, "first": first},
            token=token,
        )

    async def get_channel_followers(
        self, broadcaster_id: str, *, token: str, first: int = 1
    ) -> dict[str, Any]:
        """``GET /channels/followers`` — full payload, including ``total``."""
        return await self._helix_get(
            "/channels/followers",
            {"broadcaster_id": broadcaster_id, "first": first},
            token=token,
        )


def _error_message(response: httpx.Response) -> str:
    """Extract Twitch's ``message`` field from an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"
