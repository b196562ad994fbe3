"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime, timezone
import logging

from app.config import settings
from app.database import get_db
from app.models.schemas import HealthCheckResponse
from app.services.assistant import AssistantService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and whether the
        OpenAI and storage credentials are configured
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    openai_status = "ok" if AssistantService.is_configured() else "not_configured"
    storage_status = "ok" if settings.SUPABASE_SERVICE_KEY else "not_configured"

    # Overall status
    overall_status = (
        "healthy"
        if db_status == "ok" and openai_status == "ok" and storage_status == "ok"
        else "degraded"
    )

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        openai=openai_status,
        storage=storage_status,
        timestamp=datetime.now(timezone.utc)
    )
