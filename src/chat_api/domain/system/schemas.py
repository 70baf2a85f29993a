"""Health check payload."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field

from chat_api.__about__ import __version__
from chat_api.config.base import get_settings
from chat_api.lib.schema import PydanticBaseModel

__all__ = ("DatabaseStatus", "SystemHealth")

DatabaseStatus = Literal["online", "offline"]


class SystemHealth(PydanticBaseModel):
    """Liveness report served without authentication."""

    database_status: DatabaseStatus
    app: str = Field(default_factory=lambda: get_settings().app.NAME)
    version: str = __version__
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
