"""Twitch Helix API client.

Wraps the Helix REST endpoints the exporter reads from (channel search,
streams, users, subscriptions, channel followers) and the OAuth endpoints
used by the credential manager (app token, user token, refresh, validate).
"""

from __future__ import annotations

from twitch_exporter.helix.client import HelixClient, TokenGrant, TokenValidation

__all__ = ["HelixClient", "TokenGrant", "TokenValidation"]
