"""Prometheus metric descriptors and exposition for the Twitch exporter.

Metrics defined here (all gauges, labelled by channel or user login):

  twitch_is_live{name}
      1 if the channel is broadcasting, 0 otherwise (or when the lookup failed).

  twitch_viewer_total{name}
      Current viewer count of the channel's live stream.

  twitch_subscribers_total{name}
      Current subscriber total of the monitored user (user token only).

  twitch_followers_total{name}
      Follower total of the monitored user (user token only).

Samples are produced fresh on every scrape, so instead of module-level
metric singletons each scrape renders its own ``CollectorRegistry`` holding
a :class:`ScrapeCollector` plus the standard process/platform/GC collectors
and a build-info metric.

Usage::

    body, content_type = render_samples(result.samples())
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import NamedTuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Info,
    generate_latest,
)
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.gc_collector import GCCollector
from prometheus_client.platform_collector import PlatformCollector
from prometheus_client.process_collector import ProcessCollector
from prometheus_client.registry import Collector

from twitch_exporter import __version__

NAMESPACE = "twitch"


class MetricDescriptor(NamedTuple):
    """A declared metric: name, help text and label names."""

    name: str
    documentation: str
    labelnames: tuple[str, ...] = ("name",)


class MetricSample(NamedTuple):
    """One exported value: metric name, label value and number."""

    metric: str
    label: str
    value: float


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

IS_LIVE = MetricDescriptor(f"{NAMESPACE}_is_live", "If twitch channel is broadcasting")
VIEWER_TOTAL = MetricDescriptor(f"{NAMESPACE}_viewer_total", "Channel current viewer count")
SUBSCRIBERS_TOTAL = MetricDescriptor(
    f"{NAMESPACE}_subscribers_total", "Channel current total subscribers"
)
FOLLOWERS_TOTAL = MetricDescriptor(
    f"{NAMESPACE}_followers_total", "Channel total number of followers"
)

DESCRIPTORS: tuple[MetricDescriptor, ...] = (
    IS_LIVE,
    VIEWER_TOTAL,
    SUBSCRIBERS_TOTAL,
    FOLLOWERS_TOTAL,
)
"""All declared descriptors, in exposition order."""


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class ScrapeCollector(Collector):
    """Exposes one scrape's samples through ``prometheus_client``.

    Args:
        samples: Samples of a single scrape.  Samples whose metric is not a
            declared descriptor are ignored.
    """

    def __init__(self, samples: Iterable[MetricSample]) -> None:
        self._samples = list(samples)

    def describe(self) -> Iterator[Metric]:
        for descriptor in DESCRIPTORS:
            yield _family(descriptor)

    def collect(self) -> Iterator[Metric]:
        families = {descriptor.name: _family(descriptor) for descriptor in DESCRIPTORS}
        for sample in self._samples:
            family = families.get(sample.metric)
            if family is not None:
                family.add_metric([sample.label], sample.value)
        yield from families.values()


def _family(descriptor: MetricDescriptor) -> GaugeMetricFamily:
    return GaugeMetricFamily(
        descriptor.name,
        descriptor.documentation,
        labels=list(descriptor.labelnames),
    )


# ---------------------------------------------------------------------------
# Exposition
# ---------------------------------------------------------------------------


def build_registry(samples: Iterable[MetricSample]) -> CollectorRegistry:
    """Return a registry with the scrape's samples and the runtime collectors."""
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    Info(
        "twitch_exporter_build",
        "Twitch exporter build information.",
        registry=registry,
    ).info({"version": __version__})
    registry.register(ScrapeCollector(samples))
    return registry


def render_samples(samples: Iterable[MetricSample]) -> tuple[bytes, str]:
    """Generate a Prometheus text-format response for one scrape.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    return generate_latest(build_registry(samples)), CONTENT_TYPE_LATEST
