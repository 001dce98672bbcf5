"""FileRecord model - file metadata (actual bytes on the storage root)."""
from datetime import datetime, timezone
from sqlalchemy import String, BigInteger, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from filedrop.models.base import Base

DEFAULT_MIMETYPE = "application/octet-stream"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(Base):
    __tablename__ = "files"
    __table_args__ = (
        Index("idx_files_upload_date", "upload_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(1000), nullable=False)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    filepath: Mapped[str] = mapped_column(String(2000), nullable=False)
    filesize: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mimetype: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_MIMETYPE)
    # Set client-side so ordering keeps sub-second resolution on every backend
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
