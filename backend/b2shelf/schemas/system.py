"""Health and account schemas."""

from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    service: str = "b2shelf"
    database: str = "connected"
    timestamp: datetime


class AccountInfo(BaseModel):
    key: str
    bucket_name: str
    configured: bool
