"""Upload flows: single-request uploads, chunk staging, and merge + register.

Merges of the same upload id are serialized within this process. A merge
that has to wait finds the chunks already consumed and fails with
MissingChunkError instead of racing the first one on the same files.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from filedrop.errors import InvalidRequestError, PartialFailureError
from filedrop.models.file_record import FileRecord
from filedrop.services.catalog import CatalogService
from filedrop.services.file_storage import FileStorageService

logger = logging.getLogger(__name__)

# ── Per-upload merge locks ───────────────────────────────────────
# Entries live only while a merge for that id is running or waiting.
_merge_locks: dict[str, asyncio.Lock] = {}
_merge_waiters: dict[str, int] = {}


@asynccontextmanager
async def merge_lock(file_id: str):
    lock = _merge_locks.setdefault(file_id, asyncio.Lock())
    _merge_waiters[file_id] = _merge_waiters.get(file_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _merge_waiters[file_id] -= 1
        if _merge_waiters[file_id] == 0:
            del _merge_waiters[file_id]
            del _merge_locks[file_id]


class UploadService:
    def __init__(self, storage: FileStorageService, catalog: CatalogService):
        self.storage = storage
        self.catalog = catalog

    async def upload_file(self, source, original_name: str, mimetype: Optional[str]) -> FileRecord:
        """Store a whole file in one go and register it."""
        stored = await self.storage.save(source, original_name)
        record = await self._register(stored, original_name, mimetype)
        logger.info(f"Stored upload {record.id} '{original_name}' ({stored.filesize} bytes)")
        return record

    async def upload_chunk(self, file_id: str, chunk_index, source) -> None:
        """Stage one chunk. ``chunk_index`` may arrive as a form string."""
        if source is None or not file_id or chunk_index is None or chunk_index == "":
            raise InvalidRequestError("Invalid request")
        try:
            index = int(chunk_index)
        except (TypeError, ValueError):
            raise InvalidRequestError("Invalid request")
        await self.storage.write_chunk(file_id, index, source)

    async def complete_upload(
        self, file_id: str, filename: str, total_chunks: int,
        mimetype: Optional[str] = None,
    ) -> FileRecord:
        """Merge all staged chunks, register the result, drop the staging dir."""
        async with merge_lock(file_id):
            stored = await self.storage.merge_chunks(file_id, filename, total_chunks)
            record = await self._register(stored, filename, mimetype)
            await self.storage.remove_staging(file_id)

        logger.info(
            f"Merged upload {file_id} into file {record.id} "
            f"({total_chunks} chunks, {stored.filesize} bytes)"
        )
        return record

    async def _register(self, stored, original_name: str, mimetype: Optional[str]) -> FileRecord:
        try:
            return await self.catalog.create_file(stored, original_name, mimetype)
        except SQLAlchemyError as e:
            await self.catalog.db.rollback()
            # The file stays on disk; nothing reconciles it later
            logger.error(f"Catalog insert failed, orphaned file left at {stored.filepath}: {e}")
            raise PartialFailureError(
                f"File stored but could not be recorded: {e}", stored.filepath,
            ) from e
