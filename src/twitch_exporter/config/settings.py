"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Credentials and secrets are accessed exclusively through this module —
never call ``os.getenv`` directly elsewhere in the codebase.

Command-line flags (see :mod:`twitch_exporter.cli`) are applied on top of the
environment by passing them as keyword overrides to :class:`Settings`.

Usage::

    from twitch_exporter.config.settings import get_settings

    settings = get_settings()
    channels = settings.channel_names
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOG_LEVEL = "info"
DEFAULT_LOG_FORMAT = "text"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_LISTEN_PORT = 9184
DEFAULT_ADDRESS = "localhost"
DEFAULT_UPSTREAM_TIMEOUT = 10.0


class Settings(BaseSettings):
    """Exporter configuration backed by environment variables and an optional .env file.

    ``TWITCH_CLIENT_ID`` and ``TWITCH_CLIENT_SECRET`` are required; the
    exporter cannot obtain any token without them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = DEFAULT_LOG_LEVEL
    """Exporter log level.  One of: debug, info, warning, error, critical."""

    log_format: str = DEFAULT_LOG_FORMAT
    """Exporter log format, ``text`` or ``json``."""

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------

    metrics_path: str = DEFAULT_METRICS_PATH
    """Path to expose metrics at."""

    listen_port: int = DEFAULT_LISTEN_PORT
    """Port to listen at."""

    address: str = DEFAULT_ADDRESS
    """Address the exporter is reachable at.  Used for the OAuth redirect URI."""

    # ------------------------------------------------------------------
    # Twitch
    # ------------------------------------------------------------------

    twitch_channels: str = ""
    """Comma-separated list of channels to get basic metrics from."""

    twitch_user: str = ""
    """The user associated with the user token to get extra metrics from."""

    twitch_user_token: bool = False
    """Use a user access token instead of an application token."""

    twitch_client_id: str = Field(..., min_length=1)
    """Twitch application client ID."""

    twitch_client_secret: str = Field(..., min_length=1)
    """Twitch application client secret."""

    twitch_access_token: str = ""
    """Pre-provisioned user access token (user-token mode only)."""

    twitch_refresh_token: str = ""
    """Pre-provisioned user refresh token (user-token mode only)."""

    upstream_timeout: float = Field(default=DEFAULT_UPSTREAM_TIMEOUT, gt=0)
    """Per-call timeout in seconds for every Twitch API request.

    Bounds scrape latency; a hung upstream call would otherwise stall the
    whole scrape.
    """

    @field_validator("metrics_path")
    @classmethod
    def _validate_metrics_path(cls, v: str) -> str:
        v = v.strip() or DEFAULT_METRICS_PATH
        if not v.startswith("/"):
            v = "/" + v
        if v == "/":
            raise ValueError("metrics path cannot be '/', it is reserved for the landing page")
        return v

    @property
    def channel_names(self) -> list[str]:
        """Configured channels in order, with the monitored user appended.

        The monitored user is added when it is not already listed so that its
        live status and viewer count are exported alongside the user metrics.
        Duplicates are dropped, first occurrence wins.
        """
        names: list[str] = []
        for raw in self.twitch_channels.split(","):
            name = raw.strip()
            if name and name not in names:
                names.append(name)

        user = self.twitch_user.strip()
        if user and user not in names:
            names.append(user)
        return names

    @property
    def monitored_user(self) -> str | None:
        """The login name user metrics are collected for, if any."""
        return self.twitch_user.strip() or None

    @property
    def redirect_uri(self) -> str:
        """OAuth redirect URI registered with the Twitch application."""
        return f"http://{self.address}:{self.listen_port}"


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    In tests, call ``get_settings.cache_clear()`` after patching environment
    variables.
    """
    return Settings()  # type: ignore[call-arg]
