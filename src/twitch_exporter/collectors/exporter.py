"""Scrape orchestrator — one fresh round of Twitch lookups per Prometheus scrape.

:meth:`ScrapeOrchestrator.scrape` is invoked for every request on the metrics
path.  It first asks the credential manager for a usable token, then queries
Twitch once per configured channel and per user-scoped metric.

Failure isolation:
    Every lookup is captured as an :class:`~twitch_exporter.core.results.ItemResult`.
    An upstream failure on one channel or metric is logged and degrades only
    that sample to ``0``; the sample is still emitted so a channel that cannot
    be queried reads as "not live / 0 viewers" instead of disappearing.

    The only scrape-wide failure is
    :class:`~twitch_exporter.core.exceptions.AuthBlockedError`, raised by the
    credential manager before any data call when user-token mode has no way
    to obtain a token.  It propagates to the caller and no samples are
    produced.

Concurrency:
    Channel lookups and the user-scoped lookups are issued concurrently with
    ``asyncio.gather``; result order is fixed by construction, so sample order
    is deterministic:

    1. ``twitch_is_live`` for every channel, in configured order
    2. ``twitch_viewer_total`` for every channel, in configured order
    3. ``twitch_subscribers_total`` for the monitored user
    4. ``twitch_followers_total`` for the monitored user
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from twitch_exporter.collectors.metrics import (
    FOLLOWERS_TOTAL,
    IS_LIVE,
    SUBSCRIBERS_TOTAL,
    VIEWER_TOTAL,
    MetricSample,
)
from twitch_exporter.core.credentials import CredentialManager
from twitch_exporter.core.exceptions import TwitchExporterError, UpstreamError, UserNotFoundError
from twitch_exporter.core.results import ItemResult
from twitch_exporter.helix.client import HelixClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Scrape result model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelObservation:
    """What one scrape observed for a channel."""

    name: str
    is_live: ItemResult[int]
    viewer_count: ItemResult[int]


@dataclass(frozen=True)
class UserObservation:
    """What one scrape observed for the monitored user."""

    name: str
    subscriber_count: ItemResult[int]
    follower_count: ItemResult[int]


@dataclass(frozen=True)
class SampleOutcome:
    """A sample before collapsing: metric, label and the uncollapsed result."""

    metric: str
    label: str
    result: ItemResult[int]

    def to_sample(self) -> MetricSample:
        return MetricSample(self.metric, self.label, float(self.result.collapse()))


@dataclass(frozen=True)
class ScrapeResult:
    """Everything produced by one scrape."""

    channels: tuple[ChannelObservation, ...]
    user: UserObservation | None = None

    def outcomes(self) -> list[SampleOutcome]:
        """All sample outcomes in emission order."""
        outcomes = [SampleOutcome(IS_LIVE.name, c.name, c.is_live) for c in self.channels]
        outcomes += [
            SampleOutcome(VIEWER_TOTAL.name, c.name, c.viewer_count) for c in self.channels
        ]
        if self.user is not None:
            outcomes.append(
                SampleOutcome(SUBSCRIBERS_TOTAL.name, self.user.name, self.user.subscriber_count)
            )
            outcomes.append(
                SampleOutcome(FOLLOWERS_TOTAL.name, self.user.name, self.user.follower_count)
            )
        return outcomes

    def samples(self) -> list[MetricSample]:
        """Collapsed samples, ready for exposition."""
        return [outcome.to_sample() for outcome in self.outcomes()]

    def failures(self) -> list[SampleOutcome]:
        """Outcomes whose lookup failed and were defaulted."""
        return [outcome for outcome in self.outcomes() if not outcome.result.succeeded]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ScrapeOrchestrator:
    """Produces the full sample set for one scrape.

    Args:
        client: Helix client for data lookups.
        credentials: Credential manager consulted before every scrape.
        channels: Channel logins to export live status and viewers for.
        user: Login of the user whose subscriber/follower totals are exported.
        collect_user_metrics: Whether user-scoped metrics are enabled (user
            token mode).
    """

    def __init__(
        self,
        client: HelixClient,
        credentials: CredentialManager,
        channels: Sequence[str],
        user: str | None = None,
        collect_user_metrics: bool = False,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self.channels: tuple[str, ...] = tuple(channels)
        self.user = user
        self.collect_user_metrics = collect_user_metrics

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        client: HelixClient,
        credentials: CredentialManager,
    ) -> ScrapeOrchestrator:
        return cls(
            client,
            credentials,
            channels=settings.channel_names,
            user=settings.monitored_user,
            collect_user_metrics=settings.twitch_user_token,
        )

    async def scrape(self) -> ScrapeResult:
        """Run one scrape.

        Raises:
            AuthBlockedError: No usable credentials in user mode; nothing is
                collected.
        """
        await self._credentials.ensure_ready()
        token = self._credentials.access_token or ""

        user_login = self._user_to_collect()
        channels, user = await asyncio.gather(
            self._observe_channels(token),
            self._observe_user(user_login, token) if user_login else _none(),
        )
        return ScrapeResult(channels=channels, user=user)

    def _user_to_collect(self) -> str | None:
        """Login to collect user metrics for this scrape, ``None`` to skip them."""
        if not self.collect_user_metrics:
            return None
        if not self.user:
            logger.warning(
                "User token provided, but no user was provided, consider removing the "
                "--user.token flag or set a user to monitor. Not scraping user metrics"
            )
            return None
        return self.user

    async def _observe_channels(self, token: str) -> tuple[ChannelObservation, ...]:
        live, viewers = await asyncio.gather(
            asyncio.gather(
                *(
                    _capture(self.is_live(name, token), "channel status", channel=name)
                    for name in self.channels
                )
            ),
            asyncio.gather(
                *(
                    _capture(self.viewer_count(name, token), "viewer count", channel=name)
                    for name in self.channels
                )
            ),
        )
        return tuple(
            ChannelObservation(name=name, is_live=is_live, viewer_count=viewer_count)
            for name, is_live, viewer_count in zip(self.channels, live, viewers)
        )

    async def _observe_user(self, login: str, token: str) -> UserObservation:
        user_id = await _capture(self.user_id(login, token), "user id", user=login)
        if not user_id.succeeded:
            failed: ItemResult[int] = ItemResult.failed(0, user_id.error)  # type: ignore[arg-type]
            return UserObservation(login, subscriber_count=failed, follower_count=failed)

        broadcaster_id = str(user_id.value)
        subscribers, followers = await asyncio.gather(
            _capture(self.subscriber_count(broadcaster_id, token), "subscribers", user=login),
            _capture(self.follower_count(broadcaster_id, token), "followers", user=login),
        )
        return UserObservation(login, subscriber_count=subscribers, follower_count=followers)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def is_live(self, channel: str, token: str) -> int:
        """1 if *channel* is broadcasting, 0 if not."""
        channels = await self._client.search_channels(channel, token=token)
        wanted = channel.lower()
        for found in channels:
            names = {
                str(found.get("display_name", "")).lower(),
                str(found.get("broadcaster_login", "")).lower(),
            }
            if wanted in names and found.get("is_live"):
                return 1
        return 0

    async def viewer_count(self, channel: str, token: str) -> int:
        """Viewer count of *channel*'s live stream, 0 when offline."""
        streams = await self._client.get_streams([channel], token=token)
        if not streams:
            return 0
        return int(streams[0].get("viewer_count") or 0)

    async def user_id(self, login: str, token: str) -> str:
        """Resolve *login* to its Twitch user id."""
        users = await self._client.get_users([login], token=token)
        for user in users:
            if str(user.get("login", "")).lower() == login.lower() and user.get("id"):
                return str(user["id"])
        raise UserNotFoundError(login)

    async def subscriber_count(self, broadcaster_id: str, token: str) -> int:
        body = await self._client.get_subscriptions(broadcaster_id, token=token)
        return int(body.get("total") or 0)

    async def follower_count(self, broadcaster_id: str, token: str) -> int:
        body = await self._client.get_channel_followers(broadcaster_id, token=token)
        return int(body.get("total") or 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _capture(
    lookup: Awaitable[T],
    what: str,
    default: Any = 0,
    **context: str,
) -> ItemResult[Any]:
    """Await *lookup*, turning any failure into ``ItemResult.failed(default, cause)``."""
    try:
        return ItemResult.ok(await lookup)
    except UpstreamError as exc:
        logger.error(
            "Failed to get %s %s: status_code=%s err=%s",
            what,
            _describe(context),
            exc.status_code,
            exc.message,
        )
        return ItemResult.failed(default, exc)
    except TwitchExporterError as exc:
        logger.error("Failed to get %s %s: %s", what, _describe(context), exc)
        return ItemResult.failed(default, exc)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error getting %s %s", what, _describe(context))
        return ItemResult.failed(default, exc)


def _describe(context: dict[str, str]) -> str:
    return " ".join(f"{key}={value}" for key, value in context.items())


async def _none() -> None:
    return None
