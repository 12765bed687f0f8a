"""Listing & usage cache — per-account TTL entries, dropped on every mutation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from b2shelf.config import settings
from b2shelf.errors import UpstreamError
from b2shelf.schemas.files import RemoteFileView, UsageStats
from b2shelf.services.object_gateway import ObjectGateway, StorageObject
from b2shelf.utils.keys import FILES_PREFIX, file_url, strip_prefix, title_from_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    timestamp: float


class TTLCache(Generic[T]):
    """Per-key slots with a TTL and an invalidation generation.

    A fetch records the generation it started under and only stores its
    result if no invalidation happened meanwhile, so an invalidation is
    always the last write for a key.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._generations: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def peek(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl:
            return None
        return entry.payload

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        cached = self.peek(key)
        if cached is not None:
            return cached

        async with self._lock(key):
            cached = self.peek(key)
            if cached is not None:
                return cached

            generation = self._generations.get(key, 0)
            payload = await fetch()
            if self._generations.get(key, 0) == generation:
                self._entries[key] = CacheEntry(payload=payload, timestamp=self._clock())
            else:
                logger.debug("Discarding listing fetched before invalidation of %s", key)
            return payload

    def invalidate(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.pop(key, None)


def to_remote_view(account: str, obj: StorageObject) -> RemoteFileView:
    name = strip_prefix(obj.file_name)
    return RemoteFileView(
        file_name=name,
        full_file_name=obj.file_name,
        file_id=obj.file_id,
        size=obj.size,
        upload_timestamp=obj.upload_timestamp,
        content_type=obj.content_type,
        title=title_from_key(obj.file_name),
        url=file_url(account, name),
        account=account,
    )


class ListingCache:
    """Memoized bucket listings and usage stats, keyed by account."""

    def __init__(
        self,
        gateway: ObjectGateway,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        ttl = settings.listing_cache_ttl_seconds if ttl is None else ttl
        self._files: TTLCache[list[RemoteFileView]] = TTLCache(ttl, clock)
        self._usage: TTLCache[UsageStats] = TTLCache(ttl, clock)

    async def list_files(self, account: str) -> list[RemoteFileView]:
        acct = self._gateway.account(account)
        if not acct.is_configured:
            return []

        async def _fetch() -> list[RemoteFileView]:
            objects = await self._gateway.list_file_names(account, prefix=FILES_PREFIX)
            views = [to_remote_view(account, obj) for obj in objects]
            # Newest first; key order keeps equal timestamps deterministic
            views.sort(key=lambda v: v.full_file_name)
            views.sort(key=lambda v: v.upload_timestamp, reverse=True)
            return views

        return await self._files.get_or_fetch(account, _fetch)

    async def get_usage(self, account: str) -> UsageStats:
        acct = self._gateway.account(account)
        if not acct.is_configured:
            logger.warning("No bucket configuration found for account: %s", account)
            return UsageStats(bucket_name=f"{account} (unconfigured)")

        async def _fetch() -> UsageStats:
            bucket = await self._gateway.get_bucket(account)
            files = await self.list_files(account)
            total_size = sum(f.size for f in files)

            quota = None
            allowed = (bucket.get("accountInfo") or {}).get("allowed") or {}
            if allowed.get("capExceeded") is False and allowed.get("capacityBytes"):
                quota = int(allowed["capacityBytes"])

            return UsageStats(
                bucket_name=bucket.get("bucketName") or acct.bucket_name,
                bucket_type=bucket.get("bucketType"),
                total_files=len(files),
                total_size=total_size,
                bucket_quota=quota,
                used_percentage=(total_size / quota) * 100 if quota else None,
            )

        try:
            return await self._usage.get_or_fetch(account, _fetch)
        except UpstreamError as e:
            logger.error("Error getting bucket info for %s: %s", account, e)
            return UsageStats(bucket_name=f"{account} (error: {e.upstream_status or e.message})")

    def invalidate(self, account: str) -> None:
        self._files.invalidate(account)
        self._usage.invalidate(account)
        logger.debug("Listing cache invalidated for %s", account)
