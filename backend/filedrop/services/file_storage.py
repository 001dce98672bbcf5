"""File storage on the local filesystem.

Layout under the storage root:

    <root>/<chunk_dir>/<file_id>/<index>    staged chunks of an in-flight upload
    <root>/<timestamp_ms>-<name>            merged uploads
    <root>/file-<timestamp_ms>-<name>       single-request uploads

The root is injected at construction; nothing here reads the environment.
"""
import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Union

import aiofiles
import aiofiles.os

from filedrop.config import settings
from filedrop.errors import InvalidRequestError, MissingChunkError, StorageError

logger = logging.getLogger(__name__)

COPY_BLOCK_SIZE = 64 * 1024


@dataclass
class StoredFile:
    filename: str
    filepath: str
    filesize: int


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _safe_name(original_name: str) -> str:
    """Strip any directory part a client may have sent with the name."""
    name = Path(original_name.replace("\\", "/")).name
    return name or "unnamed"


async def _copy_into(source, out) -> None:
    """Write ``source`` (bytes or anything with ``async read(n)``) to ``out``."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        await out.write(bytes(source))
        return
    while True:
        block = await source.read(COPY_BLOCK_SIZE)
        if not block:
            break
        await out.write(block)


class FileStorageService:
    """Handles chunk staging, merging, and reads/deletes of stored files."""

    def __init__(self, root: Union[str, Path], chunk_dir_name: str = "chunks"):
        self.root = Path(root).resolve()
        self.chunk_root = self.root / chunk_dir_name

    def staging_dir(self, file_id: str) -> Path:
        """Directory holding the chunks of one upload. Rejects ids that are not a single path segment."""
        if (
            not file_id
            or file_id in (".", "..")
            or any(c in file_id for c in ("/", "\\", "\x00"))
        ):
            raise InvalidRequestError(f"Invalid fileId: {file_id!r}")
        return self.chunk_root / file_id

    async def write_chunk(self, file_id: str, index: int, source) -> Path:
        """Stage one chunk. Re-writing an index replaces its previous contents."""
        if index < 0:
            raise InvalidRequestError(f"Invalid chunkIndex: {index}")
        chunk_dir = self.staging_dir(file_id)
        chunk_path = chunk_dir / str(index)
        try:
            await aiofiles.os.makedirs(chunk_dir, exist_ok=True)
            async with aiofiles.open(chunk_path, "wb") as out:
                await _copy_into(source, out)
        except OSError as e:
            logger.error(f"Failed to save chunk {index} of {file_id}: {e}")
            raise StorageError("Failed to save chunk") from e
        logger.debug(f"Staged chunk {index} of {file_id}")
        return chunk_path

    async def merge_chunks(self, file_id: str, original_name: str, total_chunks: int) -> StoredFile:
        """Concatenate chunks 0..total_chunks-1 into a new file under the root.

        Each chunk is deleted as soon as it has been appended. A missing chunk
        raises ``MissingChunkError``; if it disappears mid-merge the partial
        output is removed, and chunks already consumed must be re-sent.
        """
        if total_chunks < 1:
            raise InvalidRequestError("totalChunks must be a positive integer")
        chunk_dir = self.staging_dir(file_id)

        for index in range(total_chunks):
            if not await aiofiles.os.path.isfile(chunk_dir / str(index)):
                logger.warning(f"Merge of {file_id} rejected: chunk {index} missing")
                raise MissingChunkError(index)

        filename = f"{_timestamp_ms()}-{_safe_name(original_name)}"
        dest = self.root / filename
        try:
            await aiofiles.os.makedirs(self.root, exist_ok=True)
            async with aiofiles.open(dest, "xb") as out:
                for index in range(total_chunks):
                    chunk_path = chunk_dir / str(index)
                    if not await aiofiles.os.path.isfile(chunk_path):
                        raise MissingChunkError(index)
                    async with aiofiles.open(chunk_path, "rb") as chunk:
                        await _copy_into(chunk, out)
                    await aiofiles.os.remove(chunk_path)
        except FileExistsError as e:
            raise self._collision(dest) from e
        except MissingChunkError as e:
            logger.warning(f"Merge of {file_id} aborted: chunk {e.index} missing")
            await self._discard(dest)
            raise
        except OSError as e:
            logger.error(f"Merge of {file_id} failed: {e}")
            await self._discard(dest)
            raise StorageError(f"Failed to merge chunks: {e}") from e

        # Size from disk, not from the sum of chunk lengths
        size = (await aiofiles.os.stat(dest)).st_size
        return StoredFile(filename=filename, filepath=str(dest), filesize=size)

    async def remove_staging(self, file_id: str) -> None:
        """Remove an upload's staging directory and anything left in it."""
        chunk_dir = self.staging_dir(file_id)
        try:
            await asyncio.to_thread(shutil.rmtree, chunk_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging dir {chunk_dir}: {e}")

    async def save(self, source, original_name: str) -> StoredFile:
        """Store a whole file received in one request."""
        filename = f"file-{_timestamp_ms()}-{_safe_name(original_name)}"
        dest = self.root / filename
        try:
            await aiofiles.os.makedirs(self.root, exist_ok=True)
            async with aiofiles.open(dest, "xb") as out:
                await _copy_into(source, out)
            size = (await aiofiles.os.stat(dest)).st_size
        except FileExistsError as e:
            raise self._collision(dest) from e
        except OSError as e:
            logger.error(f"Failed to store {original_name}: {e}")
            await self._discard(dest)
            raise StorageError(f"Failed to store file: {e}") from e
        return StoredFile(filename=filename, filepath=str(dest), filesize=size)

    async def exists(self, storage_path: str) -> bool:
        return await aiofiles.os.path.isfile(storage_path)

    async def size(self, storage_path: str) -> int:
        return (await aiofiles.os.stat(storage_path)).st_size

    async def iter_range(
        self, storage_path: str, start: int, end: int,
        block_size: int = COPY_BLOCK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Yield bytes ``start..end`` (inclusive) in blocks of at most ``block_size``."""
        remaining = end - start + 1
        async with aiofiles.open(storage_path, "rb") as f:
            await f.seek(start)
            while remaining > 0:
                block = await f.read(min(block_size, remaining))
                if not block:
                    break
                remaining -= len(block)
                yield block

    async def delete(self, storage_path: str) -> bool:
        """Delete a stored file. Returns False if it was already gone."""
        try:
            await aiofiles.os.remove(storage_path)
        except FileNotFoundError:
            return False
        return True

    def _collision(self, dest: Path) -> StorageError:
        # Same name within the same millisecond; the existing file is left alone
        logger.error(f"Destination {dest} already exists")
        return StorageError(f"Destination already exists: {dest.name}")

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove partial file {path}: {e}")


file_storage = FileStorageService(settings.FILE_STORAGE_PATH, settings.CHUNK_DIR_NAME)


def get_file_storage() -> FileStorageService:
    """FastAPI dependency returning the configured storage service."""
    return file_storage
