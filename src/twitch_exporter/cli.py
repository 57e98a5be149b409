"""Command-line entry point for the Twitch exporter.

Every flag can also be given as an environment variable (shown in brackets
in ``--help``); flags win over the environment.

Usage::

    twitch-exporter --client.id ID --client.secret SECRET --twitch.channels alice,bob

    # user token mode, collecting subscriber/follower totals for alice
    twitch-exporter --user.token --twitch.user alice

Exit codes:
    0 — Clean shutdown.
    1 — Invalid or missing configuration (e.g. no client id / secret).
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Sequence

import structlog
import uvicorn
from pydantic import ValidationError

from twitch_exporter import __version__
from twitch_exporter.config.settings import Settings

# (flag, settings field, help)
_STRING_FLAGS: tuple[tuple[str, str, str], ...] = (
    ("--log.level", "log_level", "Exporter log level [LOG_LEVEL]"),
    ("--log.format", "log_format", "Exporter log format, text or json [LOG_FORMAT]"),
    ("--metrics.path", "metrics_path", "Path to expose metrics at [METRICS_PATH]"),
    (
        "--address",
        "address",
        "The address to access the exporter used for oauth redirect uri [ADDRESS]",
    ),
    (
        "--twitch.channels",
        "twitch_channels",
        "Comma separated list of channels to get basic metrics from [TWITCH_CHANNELS]",
    ),
    (
        "--twitch.user",
        "twitch_user",
        "The user associated with the user token to get extra metrics from [TWITCH_USER]",
    ),
    ("--client.id", "twitch_client_id", "Twitch client id [TWITCH_CLIENT_ID]"),
    ("--client.secret", "twitch_client_secret", "Twitch client secret [TWITCH_CLIENT_SECRET]"),
    ("--access.token", "twitch_access_token", "Twitch user access token [TWITCH_ACCESS_TOKEN]"),
    ("--refresh.token", "twitch_refresh_token", "Twitch refresh token [TWITCH_REFRESH_TOKEN]"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="twitch-exporter",
        description="Export metrics from twitch to prometheus",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    for flag, dest, help_text in _STRING_FLAGS:
        parser.add_argument(flag, dest=dest, default=None, help=help_text)
    parser.add_argument(
        "--listen.port",
        dest="listen_port",
        type=int,
        default=None,
        help="Port to listen at [LISTEN_PORT]",
    )
    parser.add_argument(
        "--upstream.timeout",
        dest="upstream_timeout",
        type=float,
        default=None,
        help="Timeout in seconds for each Twitch API call [UPSTREAM_TIMEOUT]",
    )
    parser.add_argument(
        "--user.token",
        dest="twitch_user_token",
        action="store_true",
        default=None,
        help="Use a user access token instead of an application token [TWITCH_USER_TOKEN]",
    )
    return parser


def load_settings(argv: Sequence[str] | None = None) -> Settings:
    """Parse *argv* and overlay the given flags on the environment settings.

    Raises:
        ValidationError: If the resulting configuration is invalid.
    """
    args = build_parser().parse_args(argv)
    overrides: dict[str, Any] = {
        key: value for key, value in vars(args).items() if value is not None
    }
    return Settings(**overrides)


def main(argv: Sequence[str] | None = None) -> None:
    """Run the exporter until interrupted."""
    try:
        settings = load_settings(argv)
    except ValidationError as exc:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        print(f"[twitch-exporter] ERROR: invalid configuration: {missing}", file=sys.stderr)
        print(exc, file=sys.stderr)
        sys.exit(1)

    from twitch_exporter.api.main import create_app  # noqa: PLC0415

    app = create_app(settings)
    logger = structlog.get_logger(__name__)
    logger.info("server_ready", address=settings.address, listen_port=settings.listen_port)
    uvicorn.run(app, host="0.0.0.0", port=settings.listen_port, log_config=None)


if __name__ == "__main__":
    main()
