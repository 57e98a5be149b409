"""FastAPI dependency providers.

The application factory stores the long-lived collaborators on
``app.state``; these dependencies hand them to route handlers so that tests
can build an app around fakes without touching module globals.
"""

from __future__ import annotations

from fastapi import Request

from twitch_exporter.collectors.exporter import ScrapeOrchestrator
from twitch_exporter.config.settings import Settings
from twitch_exporter.core.credentials import CredentialManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_credential_manager(request: Request) -> CredentialManager:
    return request.app.state.credential_manager


def get_orchestrator(request: Request) -> ScrapeOrchestrator:
    return request.app.state.orchestrator


def get_authorization_url(request: Request) -> str | None:
    """Authorization URL computed at startup; ``None`` in application token mode."""
    return request.app.state.authorization_url
