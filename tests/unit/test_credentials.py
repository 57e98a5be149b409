"""Unit tests for CredentialManager.

Tests cover:
- app token expiry boundary (now - T >= L - 1800) and unset lifetime
- app token mint recording token, lifetime and issue time together
- app token mint failure leaving the stale token in place
- single-flight minting across concurrent scrapes
- user mode blocked when no token, refresh token or code exists
- authorization code exchange, consumption and rejection
- refresh on an explicitly rejected (401) token, pair fully replaced
- validation transport errors / other statuses treated as provisionally valid
- concurrent scrapes producing exactly one mint/refresh/exchange, also when
  that single attempt fails, with no torn reads
- from_settings() building the initial credentials per mode
- malformed token responses logged with the stale credentials kept

Most tests use an ``AsyncMock`` Helix client and a controllable clock; the
malformed-response tests drive a real ``HelixClient`` through ``respx``.
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from twitch_exporter.core.credentials import (
    APP_TOKEN_EXPIRY_MARGIN,
    CredentialManager,
    Credentials,
    TokenMode,
)
from twitch_exporter.core.exceptions import (
    AuthBlockedError,
    TokenAcquisitionError,
    UpstreamError,
)
from twitch_exporter.helix.client import HelixClient, TokenGrant, TokenValidation
from twitch_exporter.helix.config import TWITCH_TOKEN_URL, TWITCH_VALIDATE_URL

_VALID = TokenValidation(
    client_id="test-client-id",
    login="alice",
    user_id="42",
    scopes=("channel:read:subscriptions",),
    expires_in=3600,
)


def _rejected(token: str) -> UpstreamError:
    return UpstreamError("invalid access token", status_code=401, endpoint="oauth2/validate")


def _user_manager(
    client: AsyncMock,
    *,
    access: str | None = None,
    refresh: str | None = None,
    code: str | None = None,
) -> CredentialManager:
    return CredentialManager(
        client,
        Credentials(
            mode=TokenMode.USER,
            access_token=access,
            refresh_token=refresh,
            authorization_code=code,
        ),
    )


# ---------------------------------------------------------------------------
# Application token expiry policy
# ---------------------------------------------------------------------------


class TestAppTokenExpired:
    def test_unset_lifetime_is_expired(self) -> None:
        creds = Credentials(mode=TokenMode.APPLICATION, access_token="tok")
        assert creds.app_token_expired(now=0.0) is True

    def test_zero_lifetime_is_expired(self) -> None:
        creds = Credentials(
            mode=TokenMode.APPLICATION,
            access_token="tok",
            app_token_issued_at=100.0,
            app_token_expires_in=0,
        )
        assert creds.app_token_expired(now=100.0) is True

    @pytest.mark.parametrize(
        ("elapsed", "expired"),
        [
            (0, False),
            (3600 - APP_TOKEN_EXPIRY_MARGIN - 1, False),
            (3600 - APP_TOKEN_EXPIRY_MARGIN - 0.5, False),
            (3600 - APP_TOKEN_EXPIRY_MARGIN, True),
            (3600, True),
        ],
    )
    def test_margin_boundary(self, elapsed: float, expired: bool) -> None:
        creds = Credentials(
            mode=TokenMode.APPLICATION,
            access_token="tok",
            app_token_issued_at=1_000.0,
            app_token_expires_in=3600,
        )
        assert creds.app_token_expired(now=1_000.0 + elapsed) is expired


# ---------------------------------------------------------------------------
# Application mode
# ---------------------------------------------------------------------------


class TestApplicationMode:
    async def test_first_call_mints_and_records_lifetime(self, fake_client, clock) -> None:
        manager = CredentialManager(fake_client, Credentials(mode=TokenMode.APPLICATION), clock)

        await manager.ensure_ready()

        fake_client.request_app_token.assert_awaited_once()
        creds = manager.credentials
        assert creds.access_token == "app-token"
        assert creds.app_token_expires_in == 5_000_000
        assert creds.app_token_issued_at == clock.now
        assert creds.generation == 1

    async def test_valid_token_is_not_reminted(self, fake_client, clock) -> None:
        manager = CredentialManager(
            fake_client,
            Credentials(
                mode=TokenMode.APPLICATION,
                access_token="current",
                app_token_issued_at=clock.now,
                app_token_expires_in=3600,
            ),
            clock,
        )
        clock.advance(3600 - APP_TOKEN_EXPIRY_MARGIN - 1)

        await manager.ensure_ready()

        fake_client.request_app_token.assert_not_awaited()
        assert manager.access_token == "current"

    async def test_token_near_expiry_is_reminted(self, fake_client, clock) -> None:
        manager = CredentialManager(
            fake_client,
            Credentials(
                mode=TokenMode.APPLICATION,
                access_token="current",
                app_token_issued_at=clock.now,
                app_token_expires_in=3600,
            ),
            clock,
        )
        clock.advance(3600 - APP_TOKEN_EXPIRY_MARGIN)

        await manager.ensure_ready()

        fake_client.request_app_token.assert_awaited_once()
        assert manager.access_token == "app-token"

    async def test_mint_failure_keeps_stale_token(self, fake_client, clock, caplog) -> None:
        fake_client.request_app_token.side_effect = UpstreamError(
            "invalid client secret", status_code=403, endpoint="oauth2/token"
        )
        manager = CredentialManager(
            fake_client,
            Credentials(mode=TokenMode.APPLICATION, access_token="stale"),
            clock,
        )

        with caplog.at_level(logging.ERROR):
            await manager.ensure_ready()

        assert manager.access_token == "stale"
        assert manager.credentials.generation == 0
        assert "Failed to request app access token" in caplog.text

    async def test_missing_access_token_in_grant_is_logged(self, fake_client, clock) -> None:
        fake_client.request_app_token.side_effect = TokenAcquisitionError(
            "token response missing 'access_token' field", grant_type="client_credentials"
        )
        manager = CredentialManager(fake_client, Credentials(mode=TokenMode.APPLICATION), clock)

        await manager.ensure_ready()

        assert manager.access_token is None

    async def test_concurrent_scrapes_mint_once(self, fake_client, clock) -> None:
        async def slow_mint() -> TokenGrant:
            await asyncio.sleep(0.01)
            return TokenGrant(access_token="app-token", expires_in=5_000_000)

        fake_client.request_app_token.side_effect = slow_mint
        manager = CredentialManager(fake_client, Credentials(mode=TokenMode.APPLICATION), clock)

        await asyncio.gather(*(manager.ensure_ready() for _ in range(5)))

        assert fake_client.request_app_token.await_count == 1
        assert manager.access_token == "app-token"

    async def test_concurrent_scrapes_share_one_failed_mint(self, fake_client, clock) -> None:
        async def slow_failing_mint() -> TokenGrant:
            await asyncio.sleep(0.01)
            raise UpstreamError("Service Unavailable", status_code=503, endpoint="oauth2/token")

        fake_client.request_app_token.side_effect = slow_failing_mint
        manager = CredentialManager(
            fake_client,
            Credentials(mode=TokenMode.APPLICATION, access_token="stale"),
            clock,
        )

        await asyncio.gather(*(manager.ensure_ready() for _ in range(5)))

        assert fake_client.request_app_token.await_count == 1
        assert manager.access_token == "stale"

    async def test_next_scrape_retries_after_failed_mint(self, fake_client, clock) -> None:
        fake_client.request_app_token.side_effect = [
            UpstreamError("Service Unavailable", status_code=503, endpoint="oauth2/token"),
            TokenGrant(access_token="app-token", expires_in=5_000_000),
        ]
        manager = CredentialManager(fake_client, Credentials(mode=TokenMode.APPLICATION), clock)

        await manager.ensure_ready()
        await manager.ensure_ready()

        assert fake_client.request_app_token.await_count == 2
        assert manager.access_token == "app-token"

    async def test_authorization_code_ignored(self, fake_client, clock) -> None:
        manager = CredentialManager(fake_client, Credentials(mode=TokenMode.APPLICATION), clock)

        manager.set_authorization_code("abc")

        assert manager.credentials.authorization_code is None


# ---------------------------------------------------------------------------
# User mode
# ---------------------------------------------------------------------------


class TestUserModeBlocked:
    async def test_nothing_usable_raises_auth_blocked(self, fake_client) -> None:
        manager = _user_manager(fake_client)

        with pytest.raises(AuthBlockedError):
            await manager.ensure_ready()

        assert fake_client.mock_calls == []

    async def test_code_unblocks(self, fake_client) -> None:
        manager = _user_manager(fake_client)
        manager.set_authorization_code("the-code")

        await manager.ensure_ready()

        fake_client.request_user_token.assert_awaited_once_with("the-code")
        assert manager.access_token == "minted-access"


class TestAuthorizationCode:
    async def test_exchange_replaces_pair_and_consumes_code(self, fake_client) -> None:
        manager = _user_manager(fake_client, access="old", refresh="old-refresh", code="c1")

        await manager.ensure_ready()

        creds = manager.credentials
        assert (creds.access_token, creds.refresh_token) == ("minted-access", "minted-refresh")
        assert creds.authorization_code is None
        fake_client.validate_token.assert_not_awaited()

    async def test_consumed_code_is_not_exchanged_twice(self, fake_client) -> None:
        fake_client.validate_token.return_value = _VALID
        manager = _user_manager(fake_client, code="c1")

        await manager.ensure_ready()
        await manager.ensure_ready()

        fake_client.request_user_token.assert_awaited_once()
        fake_client.validate_token.assert_awaited_once_with("minted-access")

    async def test_rejected_code_is_discarded(self, fake_client) -> None:
        fake_client.request_user_token.side_effect = UpstreamError(
            "Invalid authorization code", status_code=400, endpoint="oauth2/token"
        )
        manager = _user_manager(fake_client, code="bad")

        await manager.ensure_ready()

        assert manager.credentials.authorization_code is None
        assert manager.access_token is None
        with pytest.raises(AuthBlockedError):
            await manager.ensure_ready()

    async def test_code_kept_on_transport_error(self, fake_client) -> None:
        fake_client.request_user_token.side_effect = UpstreamError(
            "connection error", endpoint="oauth2/token"
        )
        manager = _user_manager(fake_client, code="c1")

        await manager.ensure_ready()

        assert manager.credentials.authorization_code == "c1"
        assert manager.access_token is None


class TestUserTokenRefresh:
    async def test_valid_token_is_kept(self, fake_client) -> None:
        fake_client.validate_token.return_value = _VALID
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        await manager.ensure_ready()

        fake_client.validate_token.assert_awaited_once_with("user-access")
        fake_client.refresh_user_token.assert_not_awaited()
        assert manager.access_token == "user-access"

    async def test_refresh_token_only_refreshes(self, fake_client) -> None:
        manager = _user_manager(fake_client, refresh="user-refresh")

        await manager.ensure_ready()

        fake_client.validate_token.assert_not_awaited()
        fake_client.refresh_user_token.assert_awaited_once_with("user-refresh")
        assert manager.access_token == "refreshed-access"

    async def test_rejected_token_refreshes_once_and_replaces_pair(self, fake_client) -> None:
        fake_client.validate_token.side_effect = _rejected
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        await manager.ensure_ready()

        fake_client.refresh_user_token.assert_awaited_once_with("user-refresh")
        creds = manager.credentials
        assert (creds.access_token, creds.refresh_token) == (
            "refreshed-access",
            "refreshed-refresh",
        )

    async def test_validation_transport_error_is_provisionally_valid(self, fake_client) -> None:
        fake_client.validate_token.side_effect = UpstreamError(
            "connection error", endpoint="oauth2/validate"
        )
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        await manager.ensure_ready()

        fake_client.refresh_user_token.assert_not_awaited()
        assert manager.access_token == "user-access"

    async def test_validation_server_error_is_provisionally_valid(self, fake_client) -> None:
        fake_client.validate_token.side_effect = UpstreamError(
            "Internal Server Error", status_code=503, endpoint="oauth2/validate"
        )
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        await manager.ensure_ready()

        fake_client.refresh_user_token.assert_not_awaited()

    async def test_refresh_failure_keeps_stale_pair(self, fake_client, caplog) -> None:
        fake_client.validate_token.side_effect = _rejected
        fake_client.refresh_user_token.side_effect = UpstreamError(
            "Invalid refresh token", status_code=400, endpoint="oauth2/token"
        )
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        with caplog.at_level(logging.ERROR):
            await manager.ensure_ready()

        creds = manager.credentials
        assert (creds.access_token, creds.refresh_token) == ("user-access", "user-refresh")
        assert "Failed to refresh user access token" in caplog.text

    async def test_concurrent_scrapes_share_one_failed_refresh(self, fake_client) -> None:
        async def slow_failing_refresh(refresh_token: str) -> TokenGrant:
            await asyncio.sleep(0.01)
            raise UpstreamError("connection error", endpoint="oauth2/token")

        fake_client.validate_token.side_effect = _rejected
        fake_client.refresh_user_token.side_effect = slow_failing_refresh
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        await asyncio.gather(*(manager.ensure_ready() for _ in range(4)))

        assert fake_client.refresh_user_token.await_count == 1
        assert manager.credentials.refresh_token == "user-refresh"

    async def test_concurrent_scrapes_share_one_failed_code_exchange(self, fake_client) -> None:
        async def slow_failing_exchange(code: str) -> TokenGrant:
            await asyncio.sleep(0.01)
            raise UpstreamError("connection error", endpoint="oauth2/token")

        fake_client.request_user_token.side_effect = slow_failing_exchange
        manager = _user_manager(fake_client, code="c1")

        await asyncio.gather(*(manager.ensure_ready() for _ in range(4)))

        assert fake_client.request_user_token.await_count == 1
        assert manager.credentials.authorization_code == "c1"

    async def test_rejected_token_without_refresh_token_is_logged(
        self, fake_client, caplog
    ) -> None:
        fake_client.validate_token.side_effect = _rejected
        manager = _user_manager(fake_client, access="user-access")

        with caplog.at_level(logging.ERROR):
            await manager.ensure_ready()

        fake_client.refresh_user_token.assert_not_awaited()
        assert manager.access_token == "user-access"
        assert "no refresh token" in caplog.text

    async def test_concurrent_scrapes_refresh_once_without_torn_reads(
        self, fake_client
    ) -> None:
        async def validate(token: str) -> TokenValidation:
            if token != "refreshed-access":
                raise _rejected(token)
            return _VALID

        fake_client.validate_token.side_effect = validate
        refresh_started = asyncio.Event()

        async def slow_refresh(refresh_token: str) -> TokenGrant:
            refresh_started.set()
            await asyncio.sleep(0.02)
            return TokenGrant(
                access_token="refreshed-access", refresh_token="refreshed-refresh"
            )

        fake_client.refresh_user_token.side_effect = slow_refresh
        manager = _user_manager(fake_client, access="user-access", refresh="user-refresh")

        observed: set[tuple[str | None, str | None]] = set()

        async def reader() -> None:
            await refresh_started.wait()
            for _ in range(10):
                creds = manager.credentials
                observed.add((creds.access_token, creds.refresh_token))
                await asyncio.sleep(0.005)

        await asyncio.gather(*(manager.ensure_ready() for _ in range(4)), reader())

        assert fake_client.refresh_user_token.await_count == 1
        assert observed <= {
            ("user-access", "user-refresh"),
            ("refreshed-access", "refreshed-refresh"),
        }
        assert manager.credentials.refresh_token == "refreshed-refresh"


# ---------------------------------------------------------------------------
# from_settings
# ---------------------------------------------------------------------------


class TestFromSettings:
    def test_application_mode_ignores_user_tokens(self, settings, fake_client) -> None:
        settings = settings.model_copy(update={"twitch_access_token": "ignored"})

        manager = CredentialManager.from_settings(settings, fake_client)

        assert manager.mode is TokenMode.APPLICATION
        assert manager.access_token is None

    def test_user_mode_uses_provisioned_tokens(self, user_settings, fake_client) -> None:
        manager = CredentialManager.from_settings(user_settings, fake_client)

        creds = manager.credentials
        assert creds.mode is TokenMode.USER
        assert (creds.access_token, creds.refresh_token) == ("user-access", "user-refresh")


# ---------------------------------------------------------------------------
# Malformed token responses (real client, Twitch mocked with respx)
# ---------------------------------------------------------------------------


class TestMalformedTokenResponses:
    @pytest.fixture
    def helix(self) -> HelixClient:
        return HelixClient(client_id="test-client-id", client_secret="test-client-secret")

    @pytest.mark.parametrize(
        "payload",
        [
            {"access_token": "new-token", "expires_in": "soon"},
            ["new-token"],
            {"access_token": {"value": "new-token"}},
        ],
    )
    async def test_malformed_app_grant_keeps_stale_token(
        self, helix, clock, caplog, payload
    ) -> None:
        manager = CredentialManager(
            helix, Credentials(mode=TokenMode.APPLICATION, access_token="stale"), clock
        )

        with respx.mock:
            respx.post(TWITCH_TOKEN_URL).mock(return_value=httpx.Response(200, json=payload))
            with caplog.at_level(logging.ERROR):
                await manager.ensure_ready()

        assert manager.access_token == "stale"
        assert "Failed to request app access token" in caplog.text

    async def test_malformed_refresh_grant_keeps_stale_pair(self, helix) -> None:
        manager = _user_manager(helix, access="user-access", refresh="user-refresh")

        with respx.mock:
            respx.get(TWITCH_VALIDATE_URL).mock(
                return_value=httpx.Response(401, json={"status": 401, "message": "invalid"})
            )
            respx.post(TWITCH_TOKEN_URL).mock(
                return_value=httpx.Response(
                    200, json={"access_token": "new", "refresh_token": "r", "expires_in": "x"}
                )
            )
            await manager.ensure_ready()

        creds = manager.credentials
        assert (creds.access_token, creds.refresh_token) == ("user-access", "user-refresh")

    async def test_malformed_validation_is_provisionally_valid(self, helix) -> None:
        manager = _user_manager(helix, access="user-access", refresh="user-refresh")

        with respx.mock:
            respx.get(TWITCH_VALIDATE_URL).mock(
                return_value=httpx.Response(200, json={"expires_in": "later"})
            )
            refresh_route = respx.post(TWITCH_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "new"})
            )
            await manager.ensure_ready()

        assert refresh_route.call_count == 0
        assert manager.access_token == "user-access"
