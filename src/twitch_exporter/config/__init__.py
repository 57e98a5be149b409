"""Configuration package for the Twitch exporter.

Re-exports the settings symbols so that callers can write::

    from twitch_exporter.config import get_settings
"""

from __future__ import annotations

from twitch_exporter.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
