"""Constants for the Twitch Helix API and OAuth endpoints.

Used by :class:`~twitch_exporter.helix.client.HelixClient`.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

TWITCH_API_BASE: str = "https://api.twitch.tv/helix"
"""Base URL for the Twitch Helix REST API."""

TWITCH_OAUTH_BASE: str = "https://id.twitch.tv/oauth2"
"""Base URL for the Twitch OAuth 2.0 endpoints."""

TWITCH_TOKEN_URL: str = f"{TWITCH_OAUTH_BASE}/token"
"""Token endpoint for the client-credentials, authorization-code and
refresh-token grants."""

TWITCH_VALIDATE_URL: str = f"{TWITCH_OAUTH_BASE}/validate"
"""Token introspection endpoint.  Returns 401 for an invalid token."""

TWITCH_AUTHORIZE_URL: str = f"{TWITCH_OAUTH_BASE}/authorize"
"""User authorization page the operator is sent to in user-token mode."""

# ---------------------------------------------------------------------------
# OAuth parameters
# ---------------------------------------------------------------------------

USER_TOKEN_SCOPES: tuple[str, ...] = (
    "channel:read:subscriptions",
    "user:read:email",
    "moderator:read:followers",
)
"""Scopes requested for the user token.

``channel:read:subscriptions`` is required by ``GET /subscriptions``;
``moderator:read:followers`` by ``GET /channels/followers``.
"""

AUTHORIZATION_STATE: str = "prometheus-twitch-exporter"
"""Opaque ``state`` value sent with the authorization request."""

# ---------------------------------------------------------------------------
# Client behaviour
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT: float = 10.0
"""Default per-request timeout in seconds."""

USER_AGENT: str = "twitch-exporter/0.1 (+prometheus)"
"""User-Agent header sent with every request."""
