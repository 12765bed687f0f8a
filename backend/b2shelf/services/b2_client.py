"""Backblaze B2 native API (v2) client — one method per remote call."""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import quote

import httpx

from b2shelf.config import settings
from b2shelf.errors import (
    CopyError,
    DeleteError,
    DownloadAuthError,
    ListError,
    UploadTransferError,
    UploadUrlError,
    UpstreamAuthError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


class B2Client:
    """Thin async wrapper over the B2 HTTP API.

    Every method raises the ``UpstreamError`` subclass that names the
    failed operation; the upstream HTTP status and B2 error code are kept
    on the exception so callers can tell an expired token (401) apart
    from other failures.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_url: str | None = None,
        api_version: str | None = None,
        upload_author: str | None = None,
    ):
        self._http = http
        self._api_url = (api_url or settings.b2_api_url).rstrip("/")
        self._version = api_version or settings.b2_api_version
        self._author = upload_author or settings.upload_author

    def _endpoint(self, base_url: str, operation: str) -> str:
        return f"{base_url.rstrip('/')}/b2api/{self._version}/{operation}"

    @staticmethod
    def _raise_for_response(
        resp: httpx.Response, error_cls: type[UpstreamError], action: str,
    ) -> None:
        if resp.is_success:
            return
        code = None
        detail = resp.text
        try:
            body = resp.json()
            code = body.get("code")
            detail = body.get("message") or detail
        except ValueError:
            pass
        raise error_cls(
            f"{action}: {resp.status_code} {detail}".strip(),
            upstream_status=resp.status_code,
            code=code,
        )

    async def _send(
        self,
        error_cls: type[UpstreamError],
        action: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> dict:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{action}: {e}") from e
        self._raise_for_response(resp, error_cls, action)
        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"{action}: invalid JSON response") from e

    async def _call(
        self,
        error_cls: type[UpstreamError],
        action: str,
        api_url: str,
        token: str,
        operation: str,
        payload: dict,
    ) -> dict:
        return await self._send(
            error_cls,
            action,
            "POST",
            self._endpoint(api_url, operation),
            headers={"Authorization": token},
            json=payload,
        )

    async def authorize(self, key_id: str, application_key: str) -> dict:
        """b2_authorize_account -> {apiUrl, downloadUrl, authorizationToken, ...}"""
        basic = base64.b64encode(f"{key_id}:{application_key}".encode()).decode()
        return await self._send(
            UpstreamAuthError,
            "Failed to authenticate with B2",
            "GET",
            self._endpoint(self._api_url, "b2_authorize_account"),
            headers={"Authorization": f"Basic {basic}"},
        )

    async def list_file_names(
        self,
        api_url: str,
        token: str,
        bucket_id: str,
        prefix: str = "",
        max_count: int = 1000,
        start_file_name: str | None = None,
    ) -> dict:
        payload: dict[str, Any] = {
            "bucketId": bucket_id,
            "prefix": prefix,
            "maxFileCount": max_count,
        }
        if start_file_name:
            payload["startFileName"] = start_file_name
        return await self._call(
            ListError, "Failed to list files", api_url, token, "b2_list_file_names", payload,
        )

    async def list_buckets(self, api_url: str, token: str, account_id: str, bucket_id: str) -> dict:
        return await self._call(
            ListError,
            "Failed to get bucket info",
            api_url,
            token,
            "b2_list_buckets",
            {"accountId": account_id, "bucketId": bucket_id},
        )

    async def get_upload_url(self, api_url: str, token: str, bucket_id: str) -> dict:
        """b2_get_upload_url -> {uploadUrl, authorizationToken}"""
        return await self._call(
            UploadUrlError,
            "Failed to get upload URL from B2",
            api_url,
            token,
            "b2_get_upload_url",
            {"bucketId": bucket_id},
        )

    async def upload_file(
        self,
        upload_url: str,
        upload_token: str,
        file_name: str,
        content_type: str,
        sha1: str,
        data: bytes,
    ) -> dict:
        """POST the bytes to a single-use upload URL -> {fileId, ...}"""
        headers = {
            "Authorization": upload_token,
            "X-Bz-File-Name": quote(file_name, safe="/"),
            "Content-Type": content_type,
            "Content-Length": str(len(data)),
            "X-Bz-Content-Sha1": sha1,
            "X-Bz-Info-Author": self._author,
        }
        return await self._send(
            UploadTransferError,
            "Failed to upload file to B2",
            "POST",
            upload_url,
            headers=headers,
            content=data,
        )

    async def delete_file_version(self, api_url: str, token: str, file_id: str, file_name: str) -> dict:
        return await self._call(
            DeleteError,
            "Failed to delete file from B2",
            api_url,
            token,
            "b2_delete_file_version",
            {"fileId": file_id, "fileName": file_name},
        )

    async def copy_file(
        self, api_url: str, token: str, source_file_id: str, new_file_name: str, dest_bucket_id: str,
    ) -> dict:
        return await self._call(
            CopyError,
            "Failed to copy file with new name",
            api_url,
            token,
            "b2_copy_file",
            {
                "sourceFileId": source_file_id,
                "fileName": new_file_name,
                "destinationBucketId": dest_bucket_id,
                "metadataDirective": "COPY",
            },
        )

    async def get_download_authorization(
        self, api_url: str, token: str, bucket_id: str, file_name_prefix: str, ttl_seconds: int,
    ) -> dict:
        return await self._call(
            DownloadAuthError,
            "Failed to get download authorization",
            api_url,
            token,
            "b2_get_download_authorization",
            {
                "bucketId": bucket_id,
                "fileNamePrefix": file_name_prefix,
                "validDurationInSeconds": ttl_seconds,
            },
        )
