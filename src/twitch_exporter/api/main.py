"""FastAPI application factory.

Wires the Helix client, credential manager and scrape orchestrator into a
FastAPI app and mounts the metrics, landing-page and health routes.

Usage::

    # Via the CLI (reads flags and environment)
    twitch-exporter --twitch.channels alice,bob

    # Directly with uvicorn (environment only)
    uvicorn twitch_exporter.api.main:create_app --factory --port 9184
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from twitch_exporter import __version__
from twitch_exporter.api.routes import pages
from twitch_exporter.api.routes.metrics import build_metrics_router
from twitch_exporter.collectors.exporter import ScrapeOrchestrator
from twitch_exporter.config.settings import Settings, get_settings
from twitch_exporter.core.credentials import CredentialManager, TokenMode
from twitch_exporter.core.logging_config import configure_logging, request_id_var
from twitch_exporter.helix.client import HelixClient

logger = structlog.get_logger(__name__)

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def create_app(
    settings: Settings | None = None,
    client: HelixClient | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        settings: Exporter settings.  Defaults to :func:`get_settings`.
        client: Helix client.  Built from *settings* when omitted; tests
            inject one backed by a mocked transport.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    client = client or HelixClient(
        client_id=settings.twitch_client_id,
        client_secret=settings.twitch_client_secret,
        redirect_uri=settings.redirect_uri,
        timeout=settings.upstream_timeout,
    )
    credential_manager = CredentialManager.from_settings(settings, client)
    orchestrator = ScrapeOrchestrator.from_settings(settings, client, credential_manager)

    authorization_url: str | None = None
    if credential_manager.mode is TokenMode.USER:
        authorization_url = client.authorization_url()
        logger.info("authorize_exporter_at", url=authorization_url)
    else:
        logger.info("application_token_mode", mode=credential_manager.mode.value)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "exporter_startup",
            version=__version__,
            channels=list(orchestrator.channels),
            mode=credential_manager.mode.value,
            metrics_path=settings.metrics_path,
        )
        yield
        await client.aclose()
        logger.info("exporter_shutdown")

    application = FastAPI(
        title="Prometheus Twitch Exporter",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    application.state.settings = settings
    application.state.client = client
    application.state.credential_manager = credential_manager
    application.state.orchestrator = orchestrator
    application.state.authorization_url = authorization_url
    application.state.templates = Jinja2Templates(directory=_TEMPLATES_DIR)

    # ---- Request logging middleware ----------------------------------------

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Bind a request ID to the log context and log each response.

        All upstream failures logged during one scrape carry the same
        ``request_id``.
        """
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.debug
            log_fn("request_complete", status_code=status_code, elapsed_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Routes -----------------------------------------------------------

    application.include_router(build_metrics_router(settings.metrics_path))
    application.include_router(pages.router)

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Process-level liveness; performs no upstream I/O."""
        return JSONResponse({"status": "ok"})

    return application
