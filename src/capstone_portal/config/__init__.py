"""Configuration package for Capstone Portal.

Re-exports the settings symbols so that callers can write::

    from capstone_portal.config import get_settings
"""

from __future__ import annotations

from capstone_portal.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
