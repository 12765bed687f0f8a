"""File schemas — local records, remote listing views, request bodies."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from b2shelf.utils.storage import format_duration, format_size


class RemoteFileView(BaseModel):
    """An object as seen in the bucket listing (no local record needed)."""
    file_name: str
    full_file_name: str
    file_id: str
    size: int
    upload_timestamp: int
    content_type: str
    title: str
    url: str
    account: str


class UsageStats(BaseModel):
    """Bucket usage for the sidebar gauge."""
    bucket_name: str
    bucket_type: str | None = None
    total_files: int = 0
    total_size: int = 0
    bucket_quota: int | None = None
    used_percentage: float | None = None


class FileOut(BaseModel):
    """Local file record."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    file_name: str
    storage_key: str
    object_id: str
    size: int
    content_type: str
    account: str
    url: str
    thumbnail_url: str | None = None
    folder_id: str | None = None
    duration: float | None = None
    upload_timestamp: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field
    @property
    def size_display(self) -> str:
        return format_size(self.size)

    @computed_field
    @property
    def duration_display(self) -> str | None:
        return format_duration(self.duration) if self.duration is not None else None


class BreadcrumbItem(BaseModel):
    id: str
    name: str


class FileDetail(BaseModel):
    file: FileOut
    breadcrumb: list[BreadcrumbItem] = []


class UploadResponse(BaseModel):
    success: bool = True
    file: FileOut


def null_folder(value: str | None) -> str | None:
    """The browser sends the literal string "null" for the root."""
    if value in (None, "", "null", "root"):
        return None
    return value


class FileDeleteRequest(BaseModel):
    file_id: str = Field(alias="fileId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class FileRenameRequest(BaseModel):
    file_id: str = Field(alias="fileId", min_length=1)
    new_title: str = Field(alias="newTitle", min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("new_title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("new title must not be blank")
        return value


class FileMoveRequest(BaseModel):
    file_ids: list[str] = Field(alias="fileIds")
    folder_id: str | None = Field(default=None, alias="folderId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("folder_id", mode="before")
    @classmethod
    def _root_folder(cls, value: str | None) -> str | None:
        return null_folder(value)


class FileRenameResponse(BaseModel):
    success: bool = True
    message: str
    file: FileOut
    rename_state: str
