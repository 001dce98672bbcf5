"""Tests for chunk staging, merging and reads on the local filesystem."""
import random

import aiofiles.os
import pytest

from filedrop.errors import InvalidRequestError, MissingChunkError, StorageError
from filedrop.services import file_storage as file_storage_module
from filedrop.services.file_storage import FileStorageService


def _chunks(n, size=1000):
    rng = random.Random(n)
    return [bytes(rng.randrange(256) for _ in range(size)) for _ in range(n)]


async def test_write_chunk_creates_staging_dir(storage):
    path = await storage.write_chunk("upload-1", 0, b"hello")

    assert path == storage.chunk_root / "upload-1" / "0"
    assert path.read_bytes() == b"hello"


async def test_write_chunk_same_index_replaces_content(storage):
    await storage.write_chunk("upload-1", 3, b"first attempt")
    await storage.write_chunk("upload-1", 3, b"retry")

    assert (storage.chunk_root / "upload-1" / "3").read_bytes() == b"retry"


@pytest.mark.parametrize("file_id", ["", ".", "..", "../escape", "a/b", "a\\b", "nul\x00byte"])
async def test_write_chunk_rejects_unsafe_file_id(storage, file_id):
    with pytest.raises(InvalidRequestError):
        await storage.write_chunk(file_id, 0, b"x")


async def test_write_chunk_rejects_negative_index(storage):
    with pytest.raises(InvalidRequestError):
        await storage.write_chunk("upload-1", -1, b"x")


async def test_merge_concatenates_in_index_order(storage):
    chunks = _chunks(5)
    order = list(range(5))
    random.Random(7).shuffle(order)
    for i in order:
        await storage.write_chunk("upload-1", i, chunks[i])

    stored = await storage.merge_chunks("upload-1", "report.bin", 5)

    with open(stored.filepath, "rb") as f:
        assert f.read() == b"".join(chunks)
    assert stored.filesize == 5000
    assert stored.filename.endswith("-report.bin")
    assert stored.filepath == str(storage.root / stored.filename)
    # chunks are consumed as they are merged
    assert list((storage.chunk_root / "upload-1").iterdir()) == []


async def test_merge_missing_chunk_reports_first_gap_and_removes_output(storage):
    await storage.write_chunk("upload-1", 0, b"aaa")
    await storage.write_chunk("upload-1", 1, b"bbb")

    with pytest.raises(MissingChunkError) as exc_info:
        await storage.merge_chunks("upload-1", "report.bin", 3)

    assert exc_info.value.index == 2
    assert [p.name for p in storage.root.iterdir()] == ["chunks"]


async def test_merge_rejects_non_positive_total(storage):
    with pytest.raises(InvalidRequestError):
        await storage.merge_chunks("upload-1", "report.bin", 0)


async def test_merge_strips_directories_from_original_name(storage):
    await storage.write_chunk("upload-1", 0, b"data")

    stored = await storage.merge_chunks("upload-1", "../../etc/passwd", 1)

    assert stored.filename.endswith("-passwd")
    assert (storage.root / stored.filename).exists()


async def test_remove_staging_drops_directory(storage):
    await storage.write_chunk("upload-1", 0, b"data")
    await storage.merge_chunks("upload-1", "a.txt", 1)

    await storage.remove_staging("upload-1")
    await storage.remove_staging("never-existed")

    assert not (storage.chunk_root / "upload-1").exists()


async def test_save_names_file_with_prefix(storage):
    stored = await storage.save(b"0123456789", "notes.txt")

    assert stored.filename.startswith("file-")
    assert stored.filename.endswith("-notes.txt")
    assert stored.filesize == 10


async def test_iter_range_reads_only_requested_span_in_blocks(storage):
    stored = await storage.save(bytes(range(256)) * 4, "data.bin")

    blocks = [b async for b in storage.iter_range(stored.filepath, 10, 109, block_size=32)]

    assert [len(b) for b in blocks] == [32, 32, 32, 4]
    assert b"".join(blocks) == (bytes(range(256)) * 4)[10:110]


async def test_delete_reports_missing_file(storage):
    stored = await storage.save(b"x", "x.txt")

    assert await storage.delete(stored.filepath) is True
    assert await storage.delete(stored.filepath) is False
    assert not await storage.exists(stored.filepath)


def test_root_is_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    service = FileStorageService("relative/root")

    assert service.root.is_absolute()
    assert service.chunk_root == service.root / "chunks"


def _pretend_chunks_present(monkeypatch, calls):
    """Report every chunk as present for the first `calls` isfile checks, then ask the disk."""
    real_isfile = aiofiles.os.path.isfile
    seen = {"n": 0}

    async def isfile(path):
        seen["n"] += 1
        if seen["n"] <= calls:
            return True
        return await real_isfile(path)

    monkeypatch.setattr(aiofiles.os.path, "isfile", isfile)


async def test_merge_chunk_vanishing_mid_merge_removes_partial_output(storage, monkeypatch):
    for i, data in enumerate([b"aa", b"bb", b"c"]):
        await storage.write_chunk("upload-1", i, data)
    (storage.chunk_root / "upload-1" / "2").unlink()
    _pretend_chunks_present(monkeypatch, 3)

    with pytest.raises(MissingChunkError) as exc_info:
        await storage.merge_chunks("upload-1", "report.bin", 3)

    assert exc_info.value.index == 2
    assert list(storage.root.glob("*-report.bin")) == []


async def test_merge_unreadable_chunk_is_storage_error(storage, monkeypatch):
    await storage.write_chunk("upload-1", 0, b"aa")
    (storage.chunk_root / "upload-1" / "1").mkdir()
    _pretend_chunks_present(monkeypatch, 4)

    with pytest.raises(StorageError):
        await storage.merge_chunks("upload-1", "report.bin", 2)

    assert list(storage.root.glob("*-report.bin")) == []


async def test_save_never_overwrites_existing_file(storage, monkeypatch):
    monkeypatch.setattr(file_storage_module, "_timestamp_ms", lambda: 1700000000000)
    first = await storage.save(b"original", "same.txt")

    with pytest.raises(StorageError):
        await storage.save(b"intruder", "same.txt")

    with open(first.filepath, "rb") as f:
        assert f.read() == b"original"
