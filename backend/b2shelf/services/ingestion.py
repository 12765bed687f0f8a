"""Upload orchestration: stage -> upload -> enrich (video) -> commit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from b2shelf.errors import CommitError, FolderNotFoundError, UploadError, UpstreamError
from b2shelf.models.file_record import FileRecord
from b2shelf.services.listing_cache import ListingCache
from b2shelf.services.media_probe import EnrichmentError, MediaProbe
from b2shelf.services.metadata_index import MetadataIndex
from b2shelf.services.object_gateway import ObjectGateway
from b2shelf.utils.keys import (
    StorageKey,
    derive_storage_key,
    extension_of,
    file_url,
    now_millis,
    thumbnail_url,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadState(str, Enum):
    STAGED = "staged"
    UPLOADING = "uploading"
    ENRICHING = "enriching"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"


VALID_TRANSITIONS: dict[UploadState, set[UploadState]] = {
    UploadState.STAGED: {UploadState.UPLOADING, UploadState.FAILED},
    UploadState.UPLOADING: {UploadState.ENRICHING, UploadState.COMMITTING, UploadState.FAILED},
    UploadState.ENRICHING: {UploadState.COMMITTING},
    UploadState.COMMITTING: {UploadState.COMMITTED, UploadState.FAILED},
    UploadState.COMMITTED: set(),
    UploadState.FAILED: set(),
}


@dataclass
class UploadRun:
    """Lifecycle of one upload, kept for logging and tests."""

    storage_key: str
    state: UploadState = UploadState.STAGED
    history: list[UploadState] = field(default_factory=lambda: [UploadState.STAGED])
    since: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def transition(self, new_state: UploadState) -> bool:
        """Transition to new state. Returns True if valid, False if rejected."""
        if new_state not in VALID_TRANSITIONS[self.state]:
            logger.warning(
                "Invalid upload transition for %s: %s -> %s",
                self.storage_key, self.state.value, new_state.value,
            )
            return False
        logger.debug("Upload %s: %s -> %s", self.storage_key, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)
        self.since = datetime.now(timezone.utc)
        return True


@dataclass
class IngestionResult:
    record: FileRecord
    run: UploadRun
    enrichment_error: EnrichmentError | None = None


class IngestionPipeline:
    def __init__(
        self,
        gateway: ObjectGateway,
        listing: ListingCache,
        probe: MediaProbe,
        clock: Callable[[], int] = now_millis,
    ):
        self._gateway = gateway
        self._listing = listing
        self._probe = probe
        self._clock = clock

    async def ingest(
        self,
        index: MetadataIndex,
        *,
        staged_path: Path,
        original_filename: str,
        account: str,
        title: str | None = None,
        folder_id: str | None = None,
        content_type: str | None = None,
    ) -> IngestionResult:
        """Push a staged file to B2 and index it. The staged file is always removed."""
        try:
            return await self._ingest(
                index,
                staged_path=staged_path,
                original_filename=original_filename,
                account=account,
                title=title,
                folder_id=folder_id,
                content_type=content_type or DEFAULT_CONTENT_TYPE,
            )
        finally:
            staged_path.unlink(missing_ok=True)

    async def _ingest(
        self,
        index: MetadataIndex,
        *,
        staged_path: Path,
        original_filename: str,
        account: str,
        title: str | None,
        folder_id: str | None,
        content_type: str,
    ) -> IngestionResult:
        self._gateway.account(account)
        if folder_id is not None and await index.get_folder(folder_id) is None:
            raise FolderNotFoundError(folder_id)

        file_title = (title or "").strip() or Path(original_filename).stem or "untitled"
        timestamp = self._clock()
        key = derive_storage_key(file_title, extension_of(original_filename), timestamp)
        run = UploadRun(storage_key=key.key)

        data = await asyncio.to_thread(staged_path.read_bytes)

        try:
            return await self._store(
                index, run, key,
                data=data,
                staged_path=staged_path,
                file_title=file_title,
                account=account,
                folder_id=folder_id,
                content_type=content_type,
                timestamp=timestamp,
            )
        finally:
            self._listing.invalidate(account)

    async def _store(
        self,
        index: MetadataIndex,
        run: UploadRun,
        key: StorageKey,
        *,
        data: bytes,
        staged_path: Path,
        file_title: str,
        account: str,
        folder_id: str | None,
        content_type: str,
        timestamp: int,
    ) -> IngestionResult:
        # Upload
        run.transition(UploadState.UPLOADING)
        try:
            uploaded = await self._gateway.upload(account, data, key.key, content_type)
        except UpstreamError as e:
            run.transition(UploadState.FAILED)
            logger.error("Upload of %s to %s failed: %s", key.key, account, e)
            raise UploadError(e.message) from e

        # Media enrichment (video only, never fatal)
        duration: float | None = None
        thumb_url: str | None = None
        thumb_object_id: str | None = None
        enrichment_error: EnrichmentError | None = None
        if content_type.startswith("video/"):
            run.transition(UploadState.ENRICHING)
            try:
                result = await self._probe.enrich(staged_path)
            except Exception as e:
                result = EnrichmentError(stage="probe", message=str(e) or e.__class__.__name__)
            if isinstance(result, EnrichmentError):
                enrichment_error = result
                logger.warning(
                    "Video enrichment failed for %s at %s: %s", key.key, result.stage, result.message,
                )
            else:
                duration = result.duration
                for warning in result.warnings:
                    enrichment_error = warning
                    logger.warning(
                        "Video enrichment for %s: %s step failed: %s",
                        key.key, warning.stage, warning.message,
                    )
                if result.thumbnail_path is not None:
                    try:
                        thumb_bytes = await asyncio.to_thread(result.thumbnail_path.read_bytes)
                        thumb = await self._gateway.upload(
                            account, thumb_bytes, key.thumbnail_key, "image/jpeg",
                        )
                        thumb_object_id = thumb.object_id
                        thumb_url = thumbnail_url(account, key.thumbnail_file_name)
                    except (UpstreamError, OSError) as e:
                        enrichment_error = EnrichmentError(stage="thumbnail", message=str(e))
                        logger.warning("Error uploading thumbnail %s: %s", key.thumbnail_key, e)
                    finally:
                        result.thumbnail_path.unlink(missing_ok=True)

        # Commit
        run.transition(UploadState.COMMITTING)
        try:
            record = await index.create_file(
                title=file_title,
                file_name=key.file_name,
                storage_key=key.key,
                object_id=uploaded.object_id,
                size=len(data),
                content_type=content_type,
                account=account,
                url=file_url(account, key.file_name),
                thumbnail_url=thumb_url,
                folder_id=folder_id,
                duration=duration,
                upload_timestamp=timestamp,
            )
        except SQLAlchemyError as e:
            run.transition(UploadState.FAILED)
            logger.error("Commit of %s failed, removing orphaned upload: %s", key.key, e)
            await self._remove_orphan(account, uploaded.object_id, key.key)
            if thumb_url:
                await self._remove_orphan(account, thumb_object_id, key.thumbnail_key)
            raise CommitError(f"Failed to save file record: {e}") from e

        run.transition(UploadState.COMMITTED)
        logger.info("Ingested %s as %s (%d bytes)", file_title, key.key, len(data))
        return IngestionResult(record=record, run=run, enrichment_error=enrichment_error)

    async def _remove_orphan(self, account: str, object_id: str | None, storage_key: str) -> None:
        try:
            await self._gateway.delete(account, object_id, storage_key)
        except UpstreamError as e:
            logger.error("Orphaned object %s left in %s: %s", storage_key, account, e)
