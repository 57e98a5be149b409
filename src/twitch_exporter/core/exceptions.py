"""Application-wide exception hierarchy for the Twitch exporter.

All custom exceptions subclass ``TwitchExporterError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    TwitchExporterError
    ├── UpstreamError            (status_code: int | None, endpoint: str)
    │   └── UpstreamTimeoutError
    ├── TokenAcquisitionError    (grant_type: str)
    ├── UserNotFoundError        (login: str)
    └── AuthBlockedError

Only ``AuthBlockedError`` is allowed to abort a scrape.  Every other error is
recovered where it happens: per-item upstream failures degrade a single sample
to its default value, and token acquisition failures leave the previous
credentials in place.
"""

from __future__ import annotations


class TwitchExporterError(Exception):
    """Base class for all Twitch exporter exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Upstream exceptions
# ---------------------------------------------------------------------------


class UpstreamError(TwitchExporterError):
    """Raised when a Twitch API call fails.

    Transport errors and non-success HTTP statuses are both reported with
    this type.  ``status_code`` is ``None`` for transport errors.

    Args:
        message: Human-readable description of the failure.
        status_code: HTTP status returned by Twitch, if any.
        endpoint: API path that was called (e.g. ``"/streams"``).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint

    @property
    def is_transport_error(self) -> bool:
        """``True`` when no HTTP response was received at all."""
        return self.status_code is None


class UpstreamTimeoutError(UpstreamError):
    """Raised when a Twitch API call exceeds the configured timeout."""


# ---------------------------------------------------------------------------
# Credential exceptions
# ---------------------------------------------------------------------------


class TokenAcquisitionError(TwitchExporterError):
    """Raised when minting or refreshing an access token fails.

    Args:
        message: Description of the failure.
        grant_type: OAuth grant that was attempted (``"client_credentials"``,
            ``"authorization_code"`` or ``"refresh_token"``).
    """

    def __init__(self, message: str, grant_type: str | None = None) -> None:
        super().__init__(message)
        self.grant_type = grant_type


class AuthBlockedError(TwitchExporterError):
    """Raised when user-token mode has no usable way to obtain a token.

    No access token, no refresh token and no authorization code are
    available, so no upstream call can succeed.  The scrape is aborted and the
    operator has to complete the OAuth flow via the authorization URL.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "User token enabled, but authentication flow not completed, "
            "please use the authorization url"
        )


# ---------------------------------------------------------------------------
# Lookup exceptions
# ---------------------------------------------------------------------------


class UserNotFoundError(TwitchExporterError):
    """Raised when the monitored user login does not resolve to a Twitch user.

    Args:
        login: The login name that was looked up.
    """

    def __init__(self, login: str) -> None:
        super().__init__(f"Could not find user with login '{login}'")
        self.login = login
