"""Catalog of stored files: CRUD over FileRecord rows."""
import logging
from typing import Optional

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from filedrop.errors import InvalidRequestError, NotFoundError
from filedrop.models.file_record import FileRecord, DEFAULT_MIMETYPE
from filedrop.services.file_storage import FileStorageService, StoredFile

logger = logging.getLogger(__name__)

# files.id is a 32-bit INTEGER column
MAX_FILE_ID = 2**31 - 1


def parse_file_id(raw) -> int:
    """Parse a path/body id into a positive integer or raise InvalidRequestError."""
    try:
        file_id = int(str(raw).strip(), 10)
    except (TypeError, ValueError):
        raise InvalidRequestError("Invalid file ID")
    if file_id < 1 or file_id > MAX_FILE_ID:
        raise InvalidRequestError("Invalid file ID")
    return file_id


class CatalogService:
    """Owns the lifecycle of FileRecord rows for one DB session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_files(self) -> list[FileRecord]:
        """All records, most recent upload first."""
        result = await self.db.execute(
            select(FileRecord).order_by(desc(FileRecord.upload_date), desc(FileRecord.id))
        )
        return list(result.scalars().all())

    async def get_file(self, file_id: int) -> FileRecord:
        record = await self.db.get(FileRecord, file_id)
        if not record:
            raise NotFoundError("File not found")
        return record

    async def create_file(
        self, stored: StoredFile, original_name: str, mimetype: Optional[str] = None,
    ) -> FileRecord:
        record = FileRecord(
            filename=stored.filename,
            original_name=original_name,
            filepath=stored.filepath,
            filesize=stored.filesize,
            mimetype=mimetype or DEFAULT_MIMETYPE,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete_file(self, file_id: int, storage: FileStorageService) -> None:
        """Delete the record, then try to delete its file.

        The record goes first; a failure to remove the file is only logged,
        leaving the bytes on disk rather than a dangling catalog entry.
        """
        record = await self.get_file(file_id)
        filepath = record.filepath

        await self.db.delete(record)
        await self.db.commit()

        try:
            removed = await storage.delete(filepath)
        except OSError as e:
            logger.warning(f"Failed to delete physical file {filepath}: {e}")
            return
        if removed:
            logger.info(f"Deleted file {file_id} ({filepath})")
        else:
            logger.warning(f"File {file_id} had no file on disk at {filepath}")
