"""File routes — upload, direct-download redirects, record CRUD."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import BinaryIO

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import RedirectResponse

from b2shelf.api.deps import get_metadata_index, resolve_account
from b2shelf.config import Account, settings
from b2shelf.errors import GatewayError
from b2shelf.schemas.files import (
    BreadcrumbItem,
    FileDeleteRequest,
    FileDetail,
    FileMoveRequest,
    FileOut,
    FileRenameRequest,
    FileRenameResponse,
    UploadResponse,
    null_folder,
)
from b2shelf.services import get_file_service, get_ingestion_pipeline, get_object_gateway
from b2shelf.services.file_service import FileService
from b2shelf.services.ingestion import IngestionPipeline
from b2shelf.services.metadata_index import MetadataIndex
from b2shelf.services.object_gateway import ObjectGateway
from b2shelf.utils.keys import FILES_PREFIX, THUMBNAILS_PREFIX, extension_of

logger = logging.getLogger(__name__)

public_router = APIRouter()
router = APIRouter()

COPY_CHUNK = 1024 * 1024


def _copy_limited(src: BinaryIO, dest: BinaryIO, limit: int) -> int:
    written = 0
    while chunk := src.read(COPY_CHUNK):
        written += len(chunk)
        if written > limit:
            raise GatewayError(f"File exceeds the {limit} byte upload limit", status_code=413)
        dest.write(chunk)
    return written


async def stage_upload(upload: UploadFile) -> Path:
    """Spool the multipart body into the temp dir and return the path."""
    temp_dir = Path(settings.temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    suffix = extension_of(upload.filename or "")
    with tempfile.NamedTemporaryFile(dir=temp_dir, prefix="upload-", suffix=suffix, delete=False) as tmp:
        staged = Path(tmp.name)
        try:
            await asyncio.to_thread(_copy_limited, upload.file, tmp, settings.max_upload_bytes)
        except BaseException:
            tmp.close()
            staged.unlink(missing_ok=True)
            raise
    return staged


@public_router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_file(
    account: str = Form(...),
    title: str | None = Form(None),
    folder_id: str | None = Form(None, alias="folderId"),
    file: UploadFile = File(...),
    index: MetadataIndex = Depends(get_metadata_index),
    gateway: ObjectGateway = Depends(get_object_gateway),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
):
    """Upload one file into an account, optionally into a folder."""
    gateway.account(account)
    if not file.filename:
        raise GatewayError("Missing required fields", status_code=400)

    try:
        staged = await stage_upload(file)
    finally:
        await file.close()

    result = await pipeline.ingest(
        index,
        staged_path=staged,
        original_filename=file.filename,
        account=account,
        title=title,
        folder_id=null_folder(folder_id),
        content_type=file.content_type,
    )
    return UploadResponse(file=FileOut.model_validate(result.record))


@public_router.get("/files/{account}/{filename}")
async def serve_file(
    filename: str,
    account: Account = Depends(resolve_account),
    gateway: ObjectGateway = Depends(get_object_gateway),
):
    """Redirect to a time-limited direct B2 download URL."""
    url = await gateway.get_download_url(account.key, f"{FILES_PREFIX}{filename}")
    return RedirectResponse(url, status_code=302)


@public_router.get("/thumbnails/{account}/{filename}")
async def serve_thumbnail(
    filename: str,
    account: Account = Depends(resolve_account),
    gateway: ObjectGateway = Depends(get_object_gateway),
):
    url = await gateway.get_download_url(account.key, f"{THUMBNAILS_PREFIX}{filename}")
    return RedirectResponse(url, status_code=302)


@router.get("", response_model=list[FileOut])
async def list_files(
    folder_id: str | None = Query(None, alias="folderId"),
    account: str | None = None,
    limit: int | None = Query(None, ge=1, le=1000),
    index: MetadataIndex = Depends(get_metadata_index),
):
    """Indexed files, newest first. ``folderId=root`` lists files in no folder."""
    root_only = folder_id in ("root", "null")
    return await index.list_files(
        folder_id=None if root_only else folder_id,
        account=account if account and account != "all" else None,
        root_only=root_only,
        limit=limit,
    )


@router.get("/{file_id}", response_model=FileDetail)
async def get_file(file_id: str, index: MetadataIndex = Depends(get_metadata_index)):
    record = await index.require_file(file_id)
    breadcrumb = await index.find_breadcrumb(record.folder_id)
    return FileDetail(
        file=FileOut.model_validate(record),
        breadcrumb=[BreadcrumbItem(**item) for item in breadcrumb],
    )


@router.post("/delete")
async def delete_file(
    body: FileDeleteRequest,
    index: MetadataIndex = Depends(get_metadata_index),
    files: FileService = Depends(get_file_service),
):
    await files.delete_file(index, body.file_id)
    return {"success": True, "message": "File deleted successfully"}


@router.post("/rename", response_model=FileRenameResponse)
async def rename_file(
    body: FileRenameRequest,
    index: MetadataIndex = Depends(get_metadata_index),
    files: FileService = Depends(get_file_service),
):
    outcome = await files.rename_file(index, body.file_id, body.new_title)
    return FileRenameResponse(
        message="File renamed successfully",
        file=FileOut.model_validate(outcome.record),
        rename_state=outcome.state.value,
    )


@router.post("/move")
async def move_files(
    body: FileMoveRequest,
    index: MetadataIndex = Depends(get_metadata_index),
    files: FileService = Depends(get_file_service),
):
    count = await files.move_files(index, body.file_ids, body.folder_id)
    return {"success": True, "message": "Files moved successfully", "count": count}
