"""Prometheus exporter for Twitch channel, viewer, subscriber and follower metrics."""

__version__ = "0.1.0"
