"""Health check."""

from datetime import datetime, timezone

from fastapi import APIRouter

from b2shelf import __version__
from b2shelf.database import check_db
from b2shelf.schemas.system import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Lightweight liveness check including database connectivity."""
    db_ok = await check_db()
    return HealthResponse(
        version=__version__,
        database="connected" if db_ok else "disconnected",
        timestamp=datetime.now(timezone.utc),
    )
