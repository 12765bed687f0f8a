"""API route registration."""

from fastapi import APIRouter

from b2shelf.api.routes import accounts, files, folders, health

# Mounted at the application root: /health, /upload, /files/..., /thumbnails/...
public_router = APIRouter()
public_router.include_router(health.router, tags=["health"])
public_router.include_router(files.public_router, tags=["files"])

# Mounted under /api
api_router = APIRouter()
api_router.include_router(accounts.router, tags=["accounts"])
api_router.include_router(files.router, prefix="/files", tags=["files"])
api_router.include_router(folders.router, prefix="/folders", tags=["folders"])
