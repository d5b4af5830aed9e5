"""Health, readiness and liveness endpoints."""

import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from territorial_payroll.api.dependencies import AppSettings, DbSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class TaxSyncHealth(BaseModel):
    configured: bool
    worker_running: bool


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    version: str
    timestamp: datetime
    database: Literal["healthy", "unhealthy"]
    tax_sync: TaxSyncHealth


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: DbSession, settings: AppSettings) -> HealthResponse:
    """Database reachability plus tax sync wiring.

    An unconfigured ingest endpoint does not degrade health; committed
    periods simply stay pending until it is set.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        database = "unhealthy"

    worker = request.app.state.tax_sync_worker
    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        version=settings.engine_version,
        timestamp=datetime.now(timezone.utc),
        database=database,
        tax_sync=TaxSyncHealth(
            configured=settings.tax_sync_configured,
            worker_running=worker is not None and worker.running,
        ),
    )


@router.get("/ready")
async def readiness_check() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
