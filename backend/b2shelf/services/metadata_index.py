"""Metadata index — file and folder records in the local database."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import String, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from b2shelf.errors import FolderNotEmptyError, FolderNotFoundError, InvalidNameError, RecordNotFoundError
from b2shelf.models.base import Base
from b2shelf.models.file_record import FileRecord
from b2shelf.models.folder import Folder

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "account1"


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidNameError("Name is required")
    if "/" in name:
        raise InvalidNameError("Folder names cannot contain '/'")
    return name


class MetadataIndex:
    """CRUD over FileRecord / Folder plus the tree operations.

    Bound to one session; every public mutation commits (or rolls back)
    before returning.
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def create_file(self, **fields: Any) -> FileRecord:
        record = FileRecord(id=fields.pop("id", None) or str(uuid.uuid4()), **fields)
        self._db.add(record)
        try:
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        await self._db.refresh(record)
        return record

    async def get_file(self, file_id: str) -> FileRecord | None:
        return await self._db.get(FileRecord, file_id)

    async def require_file(self, file_id: str) -> FileRecord:
        record = await self.get_file(file_id)
        if record is None:
            raise RecordNotFoundError("File not found")
        return record

    async def list_files(
        self,
        folder_id: str | None = None,
        account: str | None = None,
        root_only: bool = False,
        limit: int | None = None,
    ) -> Sequence[FileRecord]:
        """Newest first. ``root_only`` selects files that sit in no folder."""
        stmt = select(FileRecord)
        if folder_id is not None:
            stmt = stmt.where(FileRecord.folder_id == folder_id)
        elif root_only:
            stmt = stmt.where(FileRecord.folder_id.is_(None))
        if account:
            stmt = stmt.where(FileRecord.account == account)
        stmt = stmt.order_by(FileRecord.upload_timestamp.desc(), FileRecord.storage_key)
        if limit:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def update_file_storage(
        self,
        record: FileRecord,
        *,
        title: str,
        storage_key: str,
        file_name: str,
        object_id: str,
        url: str,
    ) -> FileRecord:
        record.title = title
        record.storage_key = storage_key
        record.file_name = file_name
        record.object_id = object_id
        record.url = url
        try:
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        await self._db.refresh(record)
        return record

    async def delete_file(self, record: FileRecord) -> None:
        await self._db.delete(record)
        await self._db.commit()

    async def move_files(self, file_ids: Sequence[str], target_folder_id: str | None) -> int:
        """Reparent files in one statement. Unknown ids are skipped silently."""
        if target_folder_id is not None and await self.get_folder(target_folder_id) is None:
            raise FolderNotFoundError(target_folder_id)
        if not file_ids:
            return 0

        result = await self._db.execute(
            update(FileRecord)
            .where(FileRecord.id.in_(list(file_ids)))
            .values(folder_id=target_folder_id)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        await self._reload(FileRecord, file_ids)
        logger.info("Moved %d file(s) to folder %s", result.rowcount, target_folder_id or "root")
        return result.rowcount

    async def _reload(self, model: type[Base], ids: Sequence[str]) -> None:
        """Refresh the session copies of rows changed by a bulk UPDATE."""
        if not ids:
            return
        result = await self._db.execute(
            select(model)
            .where(model.id.in_(list(ids)))
            .execution_options(populate_existing=True)
        )
        result.scalars().all()

    async def count_files_in_folder(self, folder_id: str) -> int:
        result = await self._db.execute(
            select(func.count()).select_from(FileRecord).where(FileRecord.folder_id == folder_id)
        )
        return result.scalar_one()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def get_folder(self, folder_id: str) -> Folder | None:
        return await self._db.get(Folder, folder_id)

    async def require_folder(self, folder_id: str) -> Folder:
        folder = await self.get_folder(folder_id)
        if folder is None:
            raise FolderNotFoundError(folder_id)
        return folder

    async def list_folders(
        self, parent_id: str | None = None, account: str | None = None, root_only: bool = False,
    ) -> Sequence[Folder]:
        stmt = select(Folder)
        if parent_id is not None:
            stmt = stmt.where(Folder.parent_id == parent_id)
        elif root_only:
            stmt = stmt.where(Folder.parent_id.is_(None))
        if account and account != "all":
            stmt = stmt.where(Folder.account == account)
        result = await self._db.execute(stmt.order_by(Folder.name))
        return result.scalars().all()

    async def create_folder(
        self, name: str, parent_id: str | None = None, account: str | None = None,
    ) -> Folder:
        name = _clean_name(name)
        path = name
        if parent_id is not None:
            parent = await self.get_folder(parent_id)
            if parent is None:
                raise FolderNotFoundError(parent_id, what="Parent folder")
            path = f"{parent.path}/{name}"

        folder = Folder(
            id=str(uuid.uuid4()),
            name=name,
            parent_id=parent_id,
            path=path,
            account=account or DEFAULT_ACCOUNT,
        )
        self._db.add(folder)
        await self._db.commit()
        await self._db.refresh(folder)
        logger.info("Created folder %s", path)
        return folder

    async def _descendant_ids(self, folder_id: str) -> list[str]:
        """All folder ids below ``folder_id``, walking parent references."""
        found: list[str] = []
        frontier = [folder_id]
        while frontier:
            result = await self._db.execute(select(Folder.id).where(Folder.parent_id.in_(frontier)))
            frontier = [row for row in result.scalars().all() if row not in found]
            found.extend(frontier)
        return found

    async def rename_folder(self, folder_id: str, new_name: str) -> tuple[Folder, int]:
        """Rename and rewrite the path prefix of the whole subtree atomically.

        Returns the folder and the number of descendant paths rewritten.
        """
        new_name = _clean_name(new_name)
        folder = await self.require_folder(folder_id)

        old_path = folder.path
        if folder.parent_id is not None:
            parent = await self.require_folder(folder.parent_id)
            new_path = f"{parent.path}/{new_name}"
        else:
            new_path = new_name

        try:
            folder.name = new_name
            folder.path = new_path

            descendants = await self._descendant_ids(folder_id)
            updated = 0
            if descendants and new_path != old_path:
                prefix = f"{old_path}/"
                result = await self._db.execute(
                    update(Folder)
                    .where(
                        Folder.id.in_(descendants),
                        func.substr(Folder.path, 1, len(prefix)) == prefix,
                    )
                    .values(
                        path=literal(f"{new_path}/", String).concat(
                            func.substr(Folder.path, len(prefix) + 1)
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                updated = result.rowcount
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        await self._db.refresh(folder)
        await self._reload(Folder, descendants)
        logger.info("Renamed folder %s -> %s (%d descendant paths)", old_path, new_path, updated)
        return folder, updated

    async def delete_folder(self, folder_id: str) -> None:
        folder = await self.require_folder(folder_id)

        if await self.count_files_in_folder(folder_id) > 0:
            raise FolderNotEmptyError("Cannot delete folder with files")

        result = await self._db.execute(
            select(func.count()).select_from(Folder).where(Folder.parent_id == folder_id)
        )
        if result.scalar_one() > 0:
            raise FolderNotEmptyError("Cannot delete folder with subfolders")

        await self._db.delete(folder)
        await self._db.commit()
        logger.info("Deleted folder %s", folder.path)

    async def find_breadcrumb(self, folder_id: str | None) -> list[dict[str, str]]:
        """Root-to-leaf ``[{id, name}]``; empty for the root or an unknown id."""
        breadcrumb: list[dict[str, str]] = []
        seen: set[str] = set()
        current_id = folder_id
        while current_id and current_id not in seen:
            seen.add(current_id)
            folder = await self.get_folder(current_id)
            if folder is None:
                break
            breadcrumb.insert(0, {"id": folder.id, "name": folder.name})
            current_id = folder.parent_id
        return breadcrumb
