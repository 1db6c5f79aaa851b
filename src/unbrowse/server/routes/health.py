"""Health check routes."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status.
    """
    return {"status": "healthy"}


@router.get("/ready", response_model=None)
async def readiness_check(request: Request) -> dict[str, str] | JSONResponse:
    """Readiness check endpoint.

    Reports not ready while the configured database is unreachable.
    """
    database = getattr(request.app.state, "database", None)
    if database is not None:
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("readiness_check_failed", extra={"error.message": str(e)})
            return JSONResponse({"status": "unavailable"}, status_code=503)
    return {"status": "ready"}
