from __future__ import annotations

from . import app as plugin_configs
from . import constants
from .base import DatabaseSettings, get_settings

__all__ = (
    "DatabaseSettings",
    "constants",
    "get_settings",
    "plugin_configs",
)
