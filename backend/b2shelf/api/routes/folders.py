"""Folder routes — virtual folder tree CRUD."""

from fastapi import APIRouter, Depends

from b2shelf.api.deps import get_metadata_index
from b2shelf.schemas.files import BreadcrumbItem, null_folder
from b2shelf.schemas.folders import FolderCreate, FolderOut, FolderRename, FolderRenameResponse
from b2shelf.services.metadata_index import MetadataIndex

router = APIRouter()


@router.get("", response_model=list[FolderOut])
async def list_folders(
    parent: str | None = None,
    account: str | None = None,
    index: MetadataIndex = Depends(get_metadata_index),
):
    """Folders sorted by name. ``parent=null`` lists root folders only."""
    root_only = parent is not None and null_folder(parent) is None
    return await index.list_folders(
        parent_id=None if root_only else parent,
        account=account,
        root_only=root_only,
    )


@router.post("", response_model=FolderOut, status_code=201)
async def create_folder(body: FolderCreate, index: MetadataIndex = Depends(get_metadata_index)):
    return await index.create_folder(body.name, parent_id=body.parent, account=body.account)


@router.put("/{folder_id}", response_model=FolderRenameResponse)
async def rename_folder(
    folder_id: str,
    body: FolderRename,
    index: MetadataIndex = Depends(get_metadata_index),
):
    folder, updated = await index.rename_folder(folder_id, body.name)
    return FolderRenameResponse(
        message="Folder renamed successfully",
        folder=FolderOut.model_validate(folder),
        descendants_updated=updated,
    )


@router.delete("/{folder_id}")
async def delete_folder(folder_id: str, index: MetadataIndex = Depends(get_metadata_index)):
    await index.delete_folder(folder_id)
    return {"success": True, "message": "Folder deleted successfully"}


@router.get("/{folder_id}/breadcrumb", response_model=list[BreadcrumbItem])
async def folder_breadcrumb(folder_id: str, index: MetadataIndex = Depends(get_metadata_index)):
    return await index.find_breadcrumb(folder_id)
