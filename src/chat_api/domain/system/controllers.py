from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from litestar import Controller, MediaType, Response, get
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from chat_api.config import constants
from chat_api.domain.system.schemas import DatabaseStatus, SystemHealth

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ("SystemController",)

logger = structlog.get_logger()


class SystemController(Controller):
    tags = ["System"]

    @get(
        operation_id="SystemHealth",
        name="system:health",
        path=constants.HEALTH_ENDPOINT,
        media_type=MediaType.JSON,
        cache=False,
        exclude_from_auth=True,
    )
    async def check_system_health(self, db_session: AsyncSession) -> Response[SystemHealth]:
        """Check database available and returns app config info."""
        db_status: DatabaseStatus = "online"
        try:
            await db_session.execute(text("select 1"))
        except (OSError, SQLAlchemyError) as exc:
            logger.warning("Database health check failed", error=str(exc))
            db_status = "offline"
        return Response(
            content=SystemHealth(database_status=db_status),
            status_code=200 if db_status == "online" else 500,
            media_type=MediaType.JSON,
        )
