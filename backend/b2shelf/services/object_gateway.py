"""Remote object operations against B2, authorized through the token cache."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from urllib.parse import quote

from b2shelf.config import Account, settings
from b2shelf.errors import DeleteError, ListError, UpstreamAuthError, UpstreamError
from b2shelf.services.b2_client import B2Client
from b2shelf.services.token_cache import AuthContext, TokenCache
from b2shelf.utils.hashing import sha1_hex

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StorageObject:
    file_name: str
    file_id: str
    size: int
    content_type: str
    upload_timestamp: int

    @classmethod
    def from_api(cls, data: dict) -> "StorageObject":
        return cls(
            file_name=data["fileName"],
            file_id=data["fileId"],
            size=int(data.get("contentLength", data.get("size", 0)) or 0),
            content_type=data.get("contentType") or "application/octet-stream",
            upload_timestamp=int(data.get("uploadTimestamp") or 0),
        )


@dataclass(frozen=True)
class UploadResult:
    object_id: str
    checksum: str


@dataclass(frozen=True)
class CopyResult:
    new_object_id: str


class ObjectGateway:
    """Upload / delete / copy / download-URL / listing for one or more accounts.

    Every remote call goes through ``_authorized``: a 401 invalidates the
    cached token and the call is repeated exactly once.
    """

    def __init__(self, client: B2Client, tokens: TokenCache):
        self._client = client
        self._tokens = tokens

    def account(self, account: str) -> Account:
        return self._tokens.account(account)

    async def _authorized(
        self, account: str, call: Callable[[AuthContext], Awaitable[T]],
    ) -> T:
        ctx = await self._tokens.get_token(account)
        try:
            return await call(ctx)
        except UpstreamError as e:
            if not e.is_auth_failure or isinstance(e, UpstreamAuthError):
                raise
            logger.info("B2 rejected token for %s (%s), re-authorizing", account, e.code)
            self._tokens.invalidate(account, stale=ctx)

        ctx = await self._tokens.get_token(account)
        return await call(ctx)

    async def upload(
        self, account: str, data: bytes, storage_key: str, content_type: str,
    ) -> UploadResult:
        bucket_id = self.account(account).bucket_id
        checksum = await asyncio.to_thread(sha1_hex, data)

        async def _do(ctx: AuthContext) -> UploadResult:
            target = await self._client.get_upload_url(ctx.api_url, ctx.authorization_token, bucket_id)
            result = await self._client.upload_file(
                target["uploadUrl"],
                target["authorizationToken"],
                storage_key,
                content_type or "application/octet-stream",
                checksum,
                data,
            )
            return UploadResult(object_id=result["fileId"], checksum=checksum)

        result = await self._authorized(account, _do)
        logger.info("Uploaded %s to %s (%d bytes)", storage_key, account, len(data))
        return result

    async def resolve_object_id(self, account: str, storage_key: str) -> str | None:
        """Current version id for a key, or None when the key does not exist."""
        bucket_id = self.account(account).bucket_id

        async def _do(ctx: AuthContext) -> dict:
            return await self._client.list_file_names(
                ctx.api_url, ctx.authorization_token, bucket_id, prefix=storage_key, max_count=1,
            )

        data = await self._authorized(account, _do)
        for item in data.get("files", []):
            if item.get("fileName") == storage_key:
                return item["fileId"]
        return None

    async def delete(self, account: str, object_id: str | None, storage_key: str) -> None:
        if not object_id:
            object_id = await self.resolve_object_id(account, storage_key)
            if object_id is None:
                raise DeleteError(
                    f"Failed to delete file from B2: {storage_key} not found",
                    upstream_status=404,
                    code="file_not_present",
                )

        async def _do(ctx: AuthContext) -> dict:
            return await self._client.delete_file_version(
                ctx.api_url, ctx.authorization_token, object_id, storage_key,
            )

        await self._authorized(account, _do)
        logger.info("Deleted %s from %s", storage_key, account)

    async def copy(self, account: str, source_object_id: str, new_storage_key: str) -> CopyResult:
        bucket_id = self.account(account).bucket_id

        async def _do(ctx: AuthContext) -> dict:
            return await self._client.copy_file(
                ctx.api_url, ctx.authorization_token, source_object_id, new_storage_key, bucket_id,
            )

        data = await self._authorized(account, _do)
        logger.info("Copied %s -> %s in %s", source_object_id, new_storage_key, account)
        return CopyResult(new_object_id=data["fileId"])

    async def get_download_url(
        self, account: str, storage_key: str, ttl_seconds: int | None = None,
    ) -> str:
        acct = self.account(account)
        ttl = ttl_seconds if ttl_seconds is not None else settings.download_url_ttl_seconds

        async def _do(ctx: AuthContext) -> str:
            data = await self._client.get_download_authorization(
                ctx.api_url, ctx.authorization_token, acct.bucket_id, storage_key, ttl,
            )
            return (
                f"{ctx.download_url}/file/{acct.bucket_name}/{quote(storage_key, safe='/')}"
                f"?Authorization={data['authorizationToken']}"
            )

        return await self._authorized(account, _do)

    async def list_file_names(
        self, account: str, prefix: str = "", max_count: int | None = None,
    ) -> list[StorageObject]:
        """All objects under ``prefix``, following B2's ``nextFileName`` paging."""
        bucket_id = self.account(account).bucket_id
        page_size = max_count or settings.list_page_size
        objects: list[StorageObject] = []
        start: str | None = None

        while True:
            async def _do(ctx: AuthContext, start=start) -> dict:
                return await self._client.list_file_names(
                    ctx.api_url, ctx.authorization_token, bucket_id,
                    prefix=prefix, max_count=page_size, start_file_name=start,
                )

            page = await self._authorized(account, _do)
            objects.extend(StorageObject.from_api(item) for item in page.get("files", []))
            start = page.get("nextFileName")
            if not start:
                break

        logger.debug("Listed %d objects under %r in %s", len(objects), prefix, account)
        return objects

    async def get_bucket(self, account: str) -> dict:
        bucket_id = self.account(account).bucket_id

        async def _do(ctx: AuthContext) -> dict:
            return await self._client.list_buckets(
                ctx.api_url, ctx.authorization_token, ctx.account_id, bucket_id,
            )

        data = await self._authorized(account, _do)
        for bucket in data.get("buckets", []):
            if bucket.get("bucketId") == bucket_id:
                return bucket
        raise ListError(
            f"Failed to get bucket info: bucket {bucket_id} not found",
            upstream_status=404,
            code="not_found",
        )
