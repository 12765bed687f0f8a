"""Error taxonomy and the FastAPI handlers that render it."""

from __future__ import annotations

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ConfigError(GatewayError):
    pass


class UnknownAccountError(GatewayError):
    status_code = 400

    def __init__(self, account: str):
        self.account = account
        super().__init__(f"Invalid account: {account}")


class RecordNotFoundError(GatewayError):
    status_code = 404


class FolderNotFoundError(RecordNotFoundError):
    def __init__(self, folder_id: str, what: str = "Folder"):
        self.folder_id = folder_id
        super().__init__(f"{what} not found")


class FolderNotEmptyError(GatewayError):
    status_code = 400


class InvalidNameError(GatewayError):
    status_code = 400


class UpstreamError(GatewayError):
    """A B2 call failed; keeps the upstream status and error code."""

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        code: str | None = None,
    ):
        self.upstream_status = upstream_status
        self.code = code
        super().__init__(message)

    @property
    def is_auth_failure(self) -> bool:
        return self.upstream_status == 401

    @property
    def not_found(self) -> bool:
        return self.upstream_status == 404 or self.code in ("file_not_present", "not_found")


class UpstreamAuthError(UpstreamError):
    pass


class UploadUrlError(UpstreamError):
    pass


class UploadTransferError(UpstreamError):
    pass


class DownloadAuthError(UpstreamError):
    pass


class DeleteError(UpstreamError):
    pass


class CopyError(UpstreamError):
    pass


class ListError(UpstreamError):
    pass


class UploadError(GatewayError):
    """Ingestion failed before anything was committed."""


class CommitError(GatewayError):
    """The object was uploaded but its metadata record could not be written."""


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.__class__.__name__,
            "message": exc.message,
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "ValidationError",
            "message": message or "Invalid request",
        },
    )
