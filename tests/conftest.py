"""Shared pytest fixtures for the Twitch exporter tests.

Fixture summary
---------------
settings        — Application-token ``Settings`` for channels alice and bob.
user_settings   — User-token ``Settings`` monitoring alice.
fake_client     — ``AsyncMock`` shaped like ``HelixClient``.
clock           — Controllable monotonic clock for the credential manager.

No test touches the network: Helix traffic is either replaced by
``fake_client`` or intercepted with ``respx``.
"""

from __future__ import annotations

import os
from unittest.mock import AsyncMock

import pytest

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "TWITCH_CLIENT_ID": "test-client-id",
    "TWITCH_CLIENT_SECRET": "test-client-secret",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

from twitch_exporter.config.settings import Settings, get_settings  # noqa: E402
from twitch_exporter.helix.client import HelixClient, TokenGrant  # noqa: E402

get_settings.cache_clear()


class FakeClock:
    """Monotonic clock whose reading is set by the test."""

    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        twitch_client_id="test-client-id",
        twitch_client_secret="test-client-secret",
        twitch_channels="alice,bob",
    )


@pytest.fixture
def user_settings() -> Settings:
    return Settings(
        _env_file=None,
        twitch_client_id="test-client-id",
        twitch_client_secret="test-client-secret",
        twitch_channels="bob",
        twitch_user="alice",
        twitch_user_token=True,
        twitch_access_token="user-access",
        twitch_refresh_token="user-refresh",
    )


@pytest.fixture
def fake_client() -> AsyncMock:
    """A ``HelixClient``-shaped mock with harmless defaults.

    Data lookups return empty payloads and token calls return fresh tokens;
    tests override ``side_effect`` / ``return_value`` as needed.
    """
    client = AsyncMock(spec=HelixClient)
    client.search_channels.return_value = []
    client.get_streams.return_value = []
    client.get_users.return_value = []
    client.get_subscriptions.return_value = {"data": [], "total": 0}
    client.get_channel_followers.return_value = {"data": [], "total": 0}
    client.request_app_token.return_value = TokenGrant(access_token="app-token", expires_in=5_000_000)
    client.request_user_token.return_value = TokenGrant(
        access_token="minted-access", refresh_token="minted-refresh", expires_in=14_000
    )
    client.refresh_user_token.return_value = TokenGrant(
        access_token="refreshed-access", refresh_token="refreshed-refresh", expires_in=14_000
    )
    client.authorization_url.return_value = (
        "https://id.twitch.tv/oauth2/authorize?client_id=test-client-id&response_type=code"
    )
    return client
