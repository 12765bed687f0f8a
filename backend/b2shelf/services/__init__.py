"""Storage services — singleton registry wired at startup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from b2shelf.config import settings

if TYPE_CHECKING:
    from b2shelf.services.file_service import FileService
    from b2shelf.services.ingestion import IngestionPipeline
    from b2shelf.services.listing_cache import ListingCache
    from b2shelf.services.object_gateway import ObjectGateway
    from b2shelf.services.token_cache import TokenCache

logger = logging.getLogger(__name__)

_http: httpx.AsyncClient | None = None
_token_cache: TokenCache | None = None
_object_gateway: ObjectGateway | None = None
_listing_cache: ListingCache | None = None
_ingestion: IngestionPipeline | None = None
_file_service: FileService | None = None


async def init_services(http: httpx.AsyncClient | None = None) -> None:
    """Create and wire up all service singletons."""
    global _http, _token_cache, _object_gateway, _listing_cache, _ingestion, _file_service

    from b2shelf.services.b2_client import B2Client
    from b2shelf.services.file_service import FileService
    from b2shelf.services.ingestion import IngestionPipeline
    from b2shelf.services.listing_cache import ListingCache
    from b2shelf.services.media_probe import MediaProbe
    from b2shelf.services.object_gateway import ObjectGateway
    from b2shelf.services.token_cache import TokenCache

    accounts = settings.accounts
    _http = http or httpx.AsyncClient(timeout=settings.b2_timeout_seconds)
    client = B2Client(_http)

    _token_cache = TokenCache(client, accounts)
    _object_gateway = ObjectGateway(client, _token_cache)
    _listing_cache = ListingCache(_object_gateway)
    _ingestion = IngestionPipeline(_object_gateway, _listing_cache, MediaProbe())
    _file_service = FileService(_object_gateway, _listing_cache)

    configured = [a.key for a in accounts.values() if a.is_configured]
    logger.info(
        "Storage services initialized for %d account(s), %d configured: %s",
        len(accounts), len(configured), ", ".join(configured) or "-",
    )


async def shutdown_services() -> None:
    """Close the shared HTTP client."""
    global _http, _token_cache, _object_gateway, _listing_cache, _ingestion, _file_service
    if _http is not None:
        await _http.aclose()
    _http = None
    _token_cache = None
    _object_gateway = None
    _listing_cache = None
    _ingestion = None
    _file_service = None


def get_token_cache() -> TokenCache:
    if _token_cache is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _token_cache


def get_object_gateway() -> ObjectGateway:
    if _object_gateway is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _object_gateway


def get_listing_cache() -> ListingCache:
    if _listing_cache is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _listing_cache


def get_ingestion_pipeline() -> IngestionPipeline:
    if _ingestion is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _ingestion


def get_file_service() -> FileService:
    if _file_service is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _file_service
