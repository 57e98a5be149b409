"""Credential manager: access-token lifecycle for the two token modes.

Modes
-----
``application``
    Client-credentials token.  Minted when no lifetime has been recorded yet
    or when it is within :data:`APP_TOKEN_EXPIRY_MARGIN` seconds of its
    declared lifetime.

``user``
    Authorization-code token with refresh.  Before each scrape:

    - a pending authorization code is exchanged for a new token pair;
    - without an access token, the refresh token is used;
    - with nothing usable at all, :class:`AuthBlockedError` is raised;
    - otherwise the access token is validated upstream.  Only an explicit
      401 from ``oauth2/validate`` marks it invalid and triggers a refresh.
      Transport errors and other statuses leave it provisionally valid for
      the scrape, so an upstream outage does not cause a refresh storm.

Concurrency
-----------
:class:`Credentials` is immutable.  Mint, refresh and code exchange run under
one ``asyncio.Lock`` and publish a complete new value in a single assignment,
so a concurrent scrape reads either the old or the new pair, never a mix.
Every swap bumps ``generation``.  The manager also counts finished token
attempts; a scrape that waited on the lock while another scrape minted,
refreshed or exchanged a code skips its own attempt, whether that attempt
succeeded or failed (single flight, also during an identity outage).

Mint/refresh failures are logged and swallowed: the stale credentials stay in
place and the scrape proceeds, with downstream calls failing per item.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable

from twitch_exporter.core.exceptions import (
    AuthBlockedError,
    TokenAcquisitionError,
    UpstreamError,
)
from twitch_exporter.helix.client import HelixClient

logger = logging.getLogger(__name__)

APP_TOKEN_EXPIRY_MARGIN: int = 1800
"""Seconds before the declared lifetime at which an app token is renewed."""


class TokenMode(str, enum.Enum):
    """Which kind of access token the exporter authenticates with."""

    APPLICATION = "application"
    USER = "user"


@dataclass(frozen=True)
class Credentials:
    """Snapshot of the exporter's token state.

    Attributes:
        mode: Token mode, fixed at startup.
        access_token: Current bearer token, ``None`` until obtained.
        refresh_token: User-mode refresh token.
        authorization_code: Pending user-mode code from the OAuth redirect.
        app_token_issued_at: Clock reading when the app token was minted.
        app_token_expires_in: Declared app token lifetime in seconds.
        generation: Incremented on every token swap.
    """

    mode: TokenMode
    access_token: str | None = None
    refresh_token: str | None = None
    authorization_code: str | None = None
    app_token_issued_at: float = 0.0
    app_token_expires_in: int = 0
    generation: int = 0

    def app_token_expired(self, now: float) -> bool:
        """Whether the app token must be renewed at clock reading *now*."""
        if self.app_token_expires_in <= 0 or not self.access_token:
            return True
        elapsed = now - self.app_token_issued_at
        return elapsed >= self.app_token_expires_in - APP_TOKEN_EXPIRY_MARGIN

    @property
    def user_blocked(self) -> bool:
        """User mode with no access token, refresh token or authorization code."""
        return not (self.access_token or self.refresh_token or self.authorization_code)


class CredentialManager:
    """Owns :class:`Credentials` and keeps the access token usable.

    Args:
        client: Helix client used for token calls.
        credentials: Initial credentials.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        client: HelixClient,
        credentials: Credentials,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token_attempts = 0

    @classmethod
    def from_settings(cls, settings: Any, client: HelixClient) -> CredentialManager:
        """Build the manager from :class:`~twitch_exporter.config.settings.Settings`.

        Pre-provisioned access/refresh tokens are only used in user mode.
        """
        if settings.twitch_user_token:
            credentials = Credentials(
                mode=TokenMode.USER,
                access_token=settings.twitch_access_token or None,
                refresh_token=settings.twitch_refresh_token or None,
            )
        else:
            if settings.twitch_access_token or settings.twitch_refresh_token:
                logger.warning(
                    "Access/refresh tokens are ignored in application token mode; "
                    "set TWITCH_USER_TOKEN=true to use them"
                )
            credentials = Credentials(mode=TokenMode.APPLICATION)
        return cls(client, credentials)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def credentials(self) -> Credentials:
        """The current, complete credentials snapshot."""
        return self._credentials

    @property
    def mode(self) -> TokenMode:
        return self._credentials.mode

    @property
    def access_token(self) -> str | None:
        return self._credentials.access_token

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _swap(self, **changes: Any) -> None:
        """Publish a new credentials value.  Callers must hold ``self._lock``
        or not await between reading and calling this."""
        current = self._credentials
        self._credentials = replace(current, generation=current.generation + 1, **changes)

    def set_authorization_code(self, code: str) -> None:
        """Record the authorization code received on the OAuth redirect.

        The code is consumed by the next :meth:`ensure_ready` call in user
        mode.  Ignored in application mode.
        """
        if self.mode is not TokenMode.USER:
            logger.warning("Authorization code received, but user token mode is disabled")
            return
        current = self._credentials
        self._credentials = replace(current, authorization_code=code)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_ready(self) -> None:
        """Make sure the access token is usable for the configured mode.

        Raises:
            AuthBlockedError: User mode with no token and no way to get one.
        """
        if self.mode is TokenMode.APPLICATION:
            await self._ensure_app_token()
        else:
            await self._ensure_user_token()

    async def _ensure_app_token(self) -> None:
        if not self._credentials.app_token_expired(self._clock()):
            return

        observed_attempts = self._token_attempts
        async with self._lock:
            # Another scrape minted, or tried and failed, while we waited.
            if self._token_attempts != observed_attempts:
                return
            if not self._credentials.app_token_expired(self._clock()):
                return

            logger.info("Getting new application token")
            try:
                grant = await self._client.request_app_token()
            except (UpstreamError, TokenAcquisitionError) as exc:
                logger.error("Failed to request app access token: %s", exc)
                return
            finally:
                self._token_attempts += 1

            self._swap(
                access_token=grant.access_token,
                app_token_expires_in=grant.expires_in,
                app_token_issued_at=self._clock(),
            )

    async def _ensure_user_token(self) -> None:
        snapshot = self._credentials
        observed_attempts = self._token_attempts

        if snapshot.authorization_code:
            await self._exchange_authorization_code(observed_attempts)
            return

        if snapshot.user_blocked:
            raise AuthBlockedError()

        if not snapshot.access_token:
            logger.info("No user access token available, refreshing")
            await self._refresh_user_token(observed_attempts)
            return

        if await self._is_user_token_valid(snapshot.access_token):
            return

        if snapshot.refresh_token:
            logger.info("User token no longer valid, refreshing")
            await self._refresh_user_token(observed_attempts)
        else:
            logger.error(
                "User token no longer valid and no refresh token available, "
                "re-authorize the exporter at the authorization url"
            )

    async def _is_user_token_valid(self, token: str) -> bool:
        try:
            await self._client.validate_token(token)
        except UpstreamError as exc:
            if exc.status_code == 401:
                return False
            logger.warning(
                "Failed to validate token, assuming it is still valid for this scrape: %s",
                exc,
            )
        return True

    async def _exchange_authorization_code(self, observed_attempts: int) -> None:
        async with self._lock:
            code = self._credentials.authorization_code
            if not code or self._token_attempts != observed_attempts:
                # Consumed, or tried and failed, by a concurrent scrape.
                return

            logger.info("Authorization code received, generating new user access token")
            try:
                grant = await self._client.request_user_token(code)
            except (UpstreamError, TokenAcquisitionError) as exc:
                rejected = not (isinstance(exc, UpstreamError) and exc.is_transport_error)
                logger.error("Failed to request user access token: %s", exc)
                if rejected and self._credentials.authorization_code == code:
                    # Codes are single use; a rejected one will never succeed.
                    self._credentials = replace(self._credentials, authorization_code=None)
                return
            finally:
                self._token_attempts += 1

            pending = self._credentials.authorization_code
            self._swap(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                authorization_code=None if pending == code else pending,
            )

    async def _refresh_user_token(self, observed_attempts: int) -> None:
        async with self._lock:
            if self._token_attempts != observed_attempts:
                # Refreshed, or tried and failed, by a concurrent scrape while we waited.
                return
            current = self._credentials
            if not current.refresh_token:
                return

            try:
                grant = await self._client.refresh_user_token(current.refresh_token)
            except (UpstreamError, TokenAcquisitionError) as exc:
                logger.error("Failed to refresh user access token: %s", exc)
                return
            finally:
                self._token_attempts += 1

            self._swap(access_token=grant.access_token, refresh_token=grant.refresh_token)
