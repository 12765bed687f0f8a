"""File-scoped operations that touch both B2 and the metadata index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from b2shelf.errors import CommitError, UpstreamError
from b2shelf.models.file_record import FileRecord
from b2shelf.services.listing_cache import ListingCache
from b2shelf.services.metadata_index import MetadataIndex
from b2shelf.services.object_gateway import ObjectGateway
from b2shelf.utils.keys import (
    derive_storage_key,
    extension_of,
    file_url,
    now_millis,
    thumbnail_key_from_url,
)

logger = logging.getLogger(__name__)


class RenameState(str, Enum):
    COPIED = "copied"
    OLD_DELETED = "old_deleted"
    OLD_DELETE_FAILED = "old_delete_failed"


@dataclass
class RenameOutcome:
    record: FileRecord
    state: RenameState
    orphan_key: str | None = None


class FileService:
    def __init__(
        self,
        gateway: ObjectGateway,
        listing: ListingCache,
        clock: Callable[[], int] = now_millis,
    ):
        self._gateway = gateway
        self._listing = listing
        self._clock = clock

    async def delete_file(self, index: MetadataIndex, file_id: str) -> FileRecord:
        """Remove the object, its thumbnail and the record.

        The record goes even if B2 refuses (e.g. the object is already
        gone); the object is then left as a logged orphan.
        """
        record = await index.require_file(file_id)
        account = record.account

        try:
            await self._gateway.delete(account, record.object_id, record.storage_key)
        except UpstreamError as e:
            if e.not_found:
                logger.info("Object %s already gone from %s", record.storage_key, account)
            else:
                logger.error("Error deleting %s from B2, keeping going: %s", record.storage_key, e)
        finally:
            self._listing.invalidate(account)

        if record.thumbnail_url:
            thumb_key = thumbnail_key_from_url(record.thumbnail_url)
            try:
                await self._gateway.delete(account, None, thumb_key)
            except UpstreamError as e:
                logger.warning("Error deleting thumbnail %s: %s", thumb_key, e)

        await index.delete_file(record)
        self._listing.invalidate(account)
        logger.info("Deleted file %s (%s)", record.id, record.storage_key)
        return record

    async def rename_file(self, index: MetadataIndex, file_id: str, new_title: str) -> RenameOutcome:
        """Re-key the object under the new title: copy, repoint the record, drop the old key."""
        record = await index.require_file(file_id)
        account = record.account
        old_key, old_object_id = record.storage_key, record.object_id
        key = derive_storage_key(new_title, extension_of(record.file_name), self._clock())

        try:
            copied = await self._gateway.copy(account, old_object_id, key.key)
        finally:
            self._listing.invalidate(account)
        state = RenameState.COPIED

        try:
            record = await index.update_file_storage(
                record,
                title=new_title,
                storage_key=key.key,
                file_name=key.file_name,
                object_id=copied.new_object_id,
                url=file_url(account, key.file_name),
            )
        except SQLAlchemyError as db_error:
            logger.error("Rename of %s failed after copy, removing %s", old_key, key.key)
            try:
                await self._gateway.delete(account, copied.new_object_id, key.key)
            except UpstreamError as e:
                logger.error("Orphaned copy %s left in %s: %s", key.key, account, e)
            raise CommitError(f"Failed to update file record: {db_error}") from db_error

        orphan_key = None
        try:
            await self._gateway.delete(account, old_object_id, old_key)
            state = RenameState.OLD_DELETED
        except UpstreamError as e:
            state = RenameState.OLD_DELETE_FAILED
            orphan_key = old_key
            logger.warning("Renamed %s -> %s but old object remains: %s", old_key, key.key, e)
        finally:
            self._listing.invalidate(account)

        logger.info("Renamed %s -> %s (%s)", old_key, key.key, state.value)
        return RenameOutcome(record=record, state=state, orphan_key=orphan_key)

    async def move_files(
        self, index: MetadataIndex, file_ids: Sequence[str], folder_id: str | None,
    ) -> int:
        return await index.move_files(file_ids, folder_id)
