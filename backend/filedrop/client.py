"""Async client for the filedrop API.

Does what the browser UI does: slices a local file into chunks, sends them
one at a time, then asks the server to merge them. Several files can be
uploaded side by side with ``upload_files``; chunks of one file are never
sent concurrently.

    async with FileDropClient("http://localhost:8721") as client:
        record = await client.upload_file("video.mp4")
        await client.download_file(record["id"], "copy.mp4", byte_range=(0, 99))
"""
import asyncio
import logging
import math
import mimetypes
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import aiofiles
import aiohttp

logger = logging.getLogger(__name__)

CHUNK_SIZE = 5 * 1024 * 1024  # 5MB
DOWNLOAD_BLOCK_SIZE = 64 * 1024

ProgressCallback = Callable[[str, int, int], Awaitable[None]]


class FileDropAPIError(Exception):
    """Error from a filedrop API call: carries status, message, and URL."""

    def __init__(self, status: int, message: str, url: str):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status} from {self.url}: {self.message}"
        return f"Connection error for {self.url}: {self.message}"


def count_chunks(file_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Number of chunks for a file; an empty file still sends one (empty) chunk."""
    return max(1, math.ceil(file_size / chunk_size))


def make_file_id(filename: str) -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{filename}"


class FileDropClient:
    """Async HTTP client for the filedrop API.

    Use as an async context manager to share one connection pool across
    calls; otherwise each call opens its own session.
    """

    def __init__(
        self, base_url: str,
        chunk_size: int = CHUNK_SIZE,
        progress_callback: Optional[ProgressCallback] = None,
        timeout: float = 120,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        self._progress_callback = progress_callback
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(sock_read=timeout)

    async def open(self) -> None:
        """Open a persistent session for connection pooling."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        """Close the persistent session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "FileDropClient":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @asynccontextmanager
    async def _session_scope(self):
        if self._session:
            yield self._session
        else:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                yield session

    async def _request_json(
        self, session: aiohttp.ClientSession, method: str, path: str, **kwargs,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if resp.status >= 400 or not isinstance(data, dict) or not data.get("success"):
                    message = (data or {}).get("error") if isinstance(data, dict) else None
                    raise FileDropAPIError(
                        status=resp.status,
                        message=message or resp.reason or "No response body",
                        url=url,
                    )
                return data
        except FileDropAPIError:
            raise
        except asyncio.TimeoutError as e:
            raise FileDropAPIError(status=0, message="Request timed out", url=url) from e
        except aiohttp.ClientError as e:
            raise FileDropAPIError(status=0, message=str(e) or type(e).__name__, url=url) from e

    # ── Uploads ─────────────────────────────────────────────────────

    async def upload_file(
        self, path: Union[str, Path], mimetype: Optional[str] = None,
    ) -> dict[str, Any]:
        """Upload one file in chunks and merge it. Returns the new file record."""
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        file_size = path.stat().st_size
        total_chunks = count_chunks(file_size, self.chunk_size)
        file_id = make_file_id(path.name)
        if mimetype is None:
            mimetype = mimetypes.guess_type(path.name)[0]

        logger.info(f"Uploading {path.name} ({file_size} bytes, {total_chunks} chunks)")
        uploaded = 0
        async with self._session_scope() as session:
            async with aiofiles.open(path, "rb") as f:
                for index in range(total_chunks):
                    chunk = await f.read(self.chunk_size)
                    form = aiohttp.FormData()
                    form.add_field(
                        "chunk", chunk,
                        filename="blob", content_type="application/octet-stream",
                    )
                    form.add_field("fileId", file_id)
                    form.add_field("chunkIndex", str(index))
                    await self._request_json(session, "POST", "/api/upload-chunk", data=form)

                    uploaded += len(chunk)
                    if self._progress_callback:
                        await self._progress_callback(path.name, uploaded, file_size)

            data = await self._request_json(
                session, "POST", "/api/upload-complete",
                json={
                    "fileId": file_id,
                    "filename": path.name,
                    "totalChunks": total_chunks,
                    "mimetype": mimetype,
                },
            )
        logger.info(f"Upload of {path.name} complete (id={data['file']['id']})")
        return data["file"]

    async def upload_files(
        self, paths: Sequence[Union[str, Path]], return_exceptions: bool = False,
    ) -> list:
        """Upload several files at once, one pipeline per file. Results keep input order."""
        return await asyncio.gather(
            *(self.upload_file(p) for p in paths),
            return_exceptions=return_exceptions,
        )

    # ── Catalog ─────────────────────────────────────────────────────

    async def list_files(self) -> list[dict[str, Any]]:
        async with self._session_scope() as session:
            data = await self._request_json(session, "GET", "/api/files")
        return data["files"]

    async def delete_file(self, file_id: int) -> None:
        async with self._session_scope() as session:
            await self._request_json(session, "DELETE", f"/api/delete/{file_id}")

    async def download_file(
        self, file_id: int, dest: Union[str, Path],
        byte_range: Optional[tuple[int, int]] = None,
    ) -> int:
        """Download a file (or an inclusive byte range of it) to ``dest``. Returns bytes written."""
        url = f"{self.base_url}/api/download/{file_id}"
        headers = {}
        if byte_range is not None:
            headers["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"

        written = 0
        async with self._session_scope() as session:
            try:
                async with session.get(url, headers=headers) as resp:
                    if resp.status >= 400:
                        try:
                            body = await resp.json(content_type=None)
                            message = body.get("error") if isinstance(body, dict) else None
                        except ValueError:
                            message = None
                        raise FileDropAPIError(
                            status=resp.status,
                            message=message or resp.reason or "No response body",
                            url=url,
                        )
                    async with aiofiles.open(dest, "wb") as out:
                        async for block in resp.content.iter_chunked(DOWNLOAD_BLOCK_SIZE):
                            await out.write(block)
                            written += len(block)
            except FileDropAPIError:
                raise
            except asyncio.TimeoutError as e:
                raise FileDropAPIError(status=0, message="Request timed out", url=url) from e
            except aiohttp.ClientError as e:
                raise FileDropAPIError(status=0, message=str(e) or type(e).__name__, url=url) from e
        return written
