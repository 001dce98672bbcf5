"""Files API routes: upload (whole or chunked), list, download, delete."""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from filedrop.database import get_db
from filedrop.errors import FileDropError, InvalidRequestError, NotFoundError
from filedrop.schemas.file import (
    FileDetail,
    FileEnvelope,
    FileListResponse,
    FileSummary,
    SuccessResponse,
    UploadCompleteRequest,
)
from filedrop.services.catalog import CatalogService, parse_file_id
from filedrop.services.file_storage import FileStorageService, get_file_storage
from filedrop.services.ranges import content_range, parse_range
from filedrop.services.uploads import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])


def get_catalog(db: AsyncSession = Depends(get_db)) -> CatalogService:
    return CatalogService(db)


def get_upload_service(
    storage: FileStorageService = Depends(get_file_storage),
    catalog: CatalogService = Depends(get_catalog),
) -> UploadService:
    return UploadService(storage, catalog)


@router.get("/files", response_model=FileListResponse)
async def list_files(catalog: CatalogService = Depends(get_catalog)):
    """List all files, newest first."""
    try:
        records = await catalog.list_files()
    except SQLAlchemyError as e:
        logger.error(f"Database error listing files: {e}")
        raise FileDropError(f"Failed to fetch files: {e}") from e
    return FileListResponse(files=[FileSummary.model_validate(r) for r in records])


@router.get("/files/{file_id}", response_model=FileEnvelope, response_model_exclude_none=True)
async def get_file_metadata(
    file_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    """Get file metadata by ID."""
    record = await catalog.get_file(parse_file_id(file_id))
    return FileEnvelope(file=FileDetail.model_validate(record))


@router.post("/upload", response_model=FileEnvelope)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    uploads: UploadService = Depends(get_upload_service),
):
    """Upload a whole file in one request and create its record."""
    if file is None:
        raise InvalidRequestError("No file uploaded")
    record = await uploads.upload_file(file, file.filename or "unnamed", file.content_type)
    return FileEnvelope(
        message="File uploaded successfully",
        file=FileDetail.model_validate(record),
    )


@router.post("/upload-chunk", response_model=SuccessResponse, response_model_exclude_none=True)
async def upload_chunk(
    chunk: Optional[UploadFile] = File(None),
    file_id: Optional[str] = Form(None, alias="fileId"),
    chunk_index: Optional[str] = Form(None, alias="chunkIndex"),
    uploads: UploadService = Depends(get_upload_service),
):
    """Stage one chunk of a multi-part upload."""
    await uploads.upload_chunk(file_id, chunk_index, chunk)
    return SuccessResponse()


@router.post("/upload-complete", response_model=FileEnvelope, response_model_exclude_none=True)
async def upload_complete(
    body: UploadCompleteRequest,
    uploads: UploadService = Depends(get_upload_service),
):
    """Merge the staged chunks of an upload into one stored file."""
    record = await uploads.complete_upload(
        body.file_id, body.filename, body.total_chunks, body.mimetype,
    )
    return FileEnvelope(file=FileDetail.model_validate(record))


@router.get("/download/{file_id}")
async def download_file(
    file_id: str,
    range_header: Optional[str] = Header(None, alias="range"),
    catalog: CatalogService = Depends(get_catalog),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Stream a file, in full or as a single byte range."""
    record = await catalog.get_file(parse_file_id(file_id))
    if not await storage.exists(record.filepath):
        raise NotFoundError("File not found on disk")

    size = await storage.size(record.filepath)
    span = parse_range(range_header, size)

    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.original_name, safe='')}",
        "Accept-Ranges": "bytes",
        "ETag": f'"file-{record.id}"',
        "Cache-Control": "no-cache",
    }
    if span is None:
        start, end, status_code = 0, size - 1, 200
    else:
        start, end = span
        status_code = 206
        headers["Content-Range"] = content_range(start, end, size)
    headers["Content-Length"] = str(end - start + 1)

    return StreamingResponse(
        storage.iter_range(record.filepath, start, end),
        status_code=status_code,
        headers=headers,
        media_type=record.mimetype,
    )


@router.delete("/delete/{file_id}", response_model=SuccessResponse)
async def delete_file(
    file_id: str,
    catalog: CatalogService = Depends(get_catalog),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Delete a file record, then its bytes on disk."""
    try:
        await catalog.delete_file(parse_file_id(file_id), storage)
    except SQLAlchemyError as e:
        logger.error(f"Delete of file {file_id} failed: {e}")
        raise FileDropError(f"Delete failed: {e}") from e
    return SuccessResponse(message="File deleted successfully")
