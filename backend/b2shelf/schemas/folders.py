"""Folder schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from b2shelf.schemas.files import null_folder


class FolderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    parent_id: str | None = None
    path: str
    account: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FolderCreate(BaseModel):
    name: str
    parent: str | None = None
    account: str | None = None

    @field_validator("parent", mode="before")
    @classmethod
    def _root_parent(cls, value: str | None) -> str | None:
        return null_folder(value)


class FolderRename(BaseModel):
    name: str = Field(min_length=1)


class FolderRenameResponse(BaseModel):
    success: bool = True
    message: str
    folder: FolderOut
    descendants_updated: int = 0
