"""File request/response schemas."""
from datetime import datetime
from typing import Optional
from pydantic import Field, field_validator
from filedrop.schemas.base import CamelModel, CamelORMModel


class FileSummary(CamelORMModel):
    """A catalog entry as shown in listings. Size is a decimal string."""
    id: int
    filename: str
    original_name: str
    filesize: str
    mimetype: str
    upload_date: datetime

    @field_validator("filesize", mode="before")
    @classmethod
    def _size_as_string(cls, v):
        # Sizes may exceed what JS numbers hold exactly
        return str(v)


class FileDetail(FileSummary):
    filepath: str


class UploadCompleteRequest(CamelModel):
    file_id: str = Field(min_length=1)
    filename: str = Field(min_length=1)
    total_chunks: int = Field(gt=0)
    mimetype: Optional[str] = None


class FileListResponse(CamelModel):
    success: bool = True
    files: list[FileSummary]


class FileEnvelope(CamelModel):
    success: bool = True
    message: Optional[str] = None
    file: FileDetail


class SuccessResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
