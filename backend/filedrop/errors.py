"""Error taxonomy for the storage API.

Each error carries the HTTP status it maps to; ``filedrop.main`` turns any
``FileDropError`` into a ``{"success": false, "error": ...}`` JSON body.
"""
from typing import Optional


class FileDropError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidRequestError(FileDropError):
    """Missing or malformed input."""

    status_code = 400


class NotFoundError(FileDropError):
    """No matching record, or the record's file is gone from disk."""

    status_code = 404


class RangeNotSatisfiableError(FileDropError):
    status_code = 416

    def __init__(self, size: int, range_header: Optional[str] = None):
        self.size = size
        self.range_header = range_header
        super().__init__(f"Requested range not satisfiable (file size {size})")


class StorageError(FileDropError):
    """Filesystem failure while writing, merging, or reading."""

    status_code = 500


class PartialFailureError(StorageError):
    """The merged file was written but could not be registered in the catalog."""

    def __init__(self, message: str, filepath: str):
        self.filepath = filepath
        super().__init__(message)


class MergeFailureError(FileDropError):
    status_code = 500


class MissingChunkError(MergeFailureError):
    """A staged chunk was absent when the merge reached its index."""

    status_code = 400

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Missing chunk {index}")
