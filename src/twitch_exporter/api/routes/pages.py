"""HTML landing page and OAuth redirect target.

``GET /`` renders a short page linking to the metrics path and, in user
token mode, to the Twitch authorization URL.  Twitch redirects the operator
back to the same path with a ``code`` query parameter once the exporter has
been authorized; the code is handed to the credential manager, which
exchanges it on the next scrape.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from twitch_exporter.api.dependencies import (
    get_app_settings,
    get_authorization_url,
    get_credential_manager,
)
from twitch_exporter.config.settings import Settings
from twitch_exporter.core.credentials import CredentialManager

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["pages"])


def _templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


@router.get("/", response_class=HTMLResponse)
async def index(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
    credential_manager: Annotated[CredentialManager, Depends(get_credential_manager)],
    authorization_url: Annotated[str | None, Depends(get_authorization_url)],
    code: Annotated[str | None, Query()] = None,
) -> HTMLResponse:
    """Render the landing page; record the authorization code if one was sent.

    Args:
        request: The current HTTP request.
        settings: Application settings.
        credential_manager: Receives the authorization code.
        authorization_url: Link shown in user token mode.
        code: OAuth authorization code from the Twitch redirect.

    Returns:
        Rendered ``index.html`` template.
    """
    authorized = False
    if code:
        credential_manager.set_authorization_code(code)
        authorized = settings.twitch_user_token
        if authorized:
            logger.info("exporter_authorized_by_user")

    return _templates(request).TemplateResponse(
        request,
        "index.html",
        {
            "metrics_path": settings.metrics_path,
            "user_token": settings.twitch_user_token,
            "authorization_url": authorization_url,
            "authorized": authorized,
        },
    )
