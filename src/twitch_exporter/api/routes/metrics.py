"""Prometheus scrape route.

Every ``GET`` on the configured metrics path runs one
:meth:`~twitch_exporter.collectors.exporter.ScrapeOrchestrator.scrape` and
renders its samples in the Prometheus text exposition format.

When the scrape is aborted because user-token mode has no usable
credentials, the route answers ``503`` with a plain-text explanation and no
samples, so Prometheus records the target as down instead of ingesting
misleading zeros.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import PlainTextResponse

from twitch_exporter.api.dependencies import get_orchestrator
from twitch_exporter.collectors.exporter import ScrapeOrchestrator
from twitch_exporter.collectors.metrics import render_samples
from twitch_exporter.core.exceptions import AuthBlockedError

logger = structlog.get_logger(__name__)


async def scrape_metrics(
    orchestrator: Annotated[ScrapeOrchestrator, Depends(get_orchestrator)],
) -> Response:
    """Run a scrape and return the exposition body."""
    try:
        result = await orchestrator.scrape()
    except AuthBlockedError as exc:
        logger.error("scrape_aborted", reason=str(exc))
        return PlainTextResponse(str(exc), status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    failures = result.failures()
    if failures:
        logger.warning(
            "scrape_degraded",
            failed=[f"{outcome.metric}{{name={outcome.label}}}" for outcome in failures],
        )

    body, content_type = render_samples(result.samples())
    return Response(content=body, media_type=content_type)


def build_metrics_router(metrics_path: str) -> APIRouter:
    """Return a router serving :func:`scrape_metrics` at *metrics_path*."""
    router = APIRouter(tags=["metrics"])
    router.add_api_route(
        metrics_path,
        scrape_metrics,
        methods=["GET"],
        response_class=Response,
        include_in_schema=False,
    )
    return router
