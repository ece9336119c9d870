from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from ephemera.core.errors import ContentNotFoundError
from ephemera.services.temp_file import StoredFile, TempFileConfig, TempFileService
from tests.helpers import make_store, store_payload


@pytest.mark.asyncio
async def test_create_file_allocates_unique_private_files(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        first = await store.create_file()
        second = await store.create_file()

        assert first.name != second.name
        assert first.name.startswith(TempFileService.FILE_PREFIX)
        assert first.directory == store.base_dir
        assert first.path.is_file()
        assert first.path.stat().st_size == 0
        assert stat.S_IMODE(first.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(store.base_dir.stat().st_mode) == 0o700
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_create_file_recreates_missing_directory(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        assert not store.base_dir.exists()
        stored = await store.create_file()
        assert store.base_dir.is_dir()
        stored.path.unlink()
        store.base_dir.rmdir()

        again = await store.create_file()
        assert again.path.is_file()
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_create_file_fails_with_os_error_when_directory_cannot_exist(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"not a directory")
    store = TempFileService(TempFileConfig(base_dir=str(blocker / "decrypted")))
    try:
        with pytest.raises(OSError):
            await store.create_file()
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_write_file_replaces_payload_and_reports_size(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        stored = await store_payload(store, b"first payload")
        stored = await store.write_file(stored, b"second")

        assert stored.size == 6
        assert stored.path.read_bytes() == b"second"
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_write_file_rejects_files_outside_reserved_directory(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        outsider = StoredFile(name="x", directory=tmp_path, mtime=0.0)
        with pytest.raises(ValueError, match="not inside"):
            await store.write_file(outsider, b"data")
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_list_files_is_empty_without_directory(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        assert await store.list_files() == []
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_list_files_propagates_unreadable_directory(tmp_path: Path, monkeypatch):
    store = make_store(tmp_path)
    try:
        await store_payload(store, b"abc")

        def denied(self):
            raise PermissionError(13, "Permission denied", str(self))

        monkeypatch.setattr(Path, "iterdir", denied)

        with pytest.raises(PermissionError):
            await store.list_files()
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_list_files_reports_regular_files_only(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        stored = await store_payload(store, b"abc")
        (store.base_dir / "nested").mkdir()
        target = tmp_path / "outside.txt"
        target.write_bytes(b"outside")
        os.symlink(target, store.base_dir / "link")

        files = await store.list_files()

        assert [f.name for f in files] == [stored.name]
        assert files[0].size == 3
        assert files[0].mtime == pytest.approx(stored.path.stat().st_mtime)
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_delete_file_results(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        stored = await store_payload(store, b"abc")
        assert await store.delete_file(stored) is True
        assert not stored.path.exists()

        # Already gone still counts as deleted.
        assert await store.delete_file(stored) is True

        target = tmp_path / "outside.txt"
        target.write_bytes(b"keep me")
        os.symlink(target, store.base_dir / "link")
        link = StoredFile(name="link", directory=store.base_dir, mtime=0.0)
        assert await store.delete_file(link) is False
        assert target.read_bytes() == b"keep me"

        foreign = StoredFile(name="outside.txt", directory=tmp_path, mtime=0.0)
        assert await store.delete_file(foreign) is False
        assert target.exists()
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_open_raw_reads_stored_bytes(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        stored = await store_payload(store, b"\x00\x01raw bytes")
        with await store.open_raw(stored.name) as handle:
            assert handle.read() == b"\x00\x01raw bytes"
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_open_raw_missing_symlink_or_traversal_is_not_found(tmp_path: Path):
    store = make_store(tmp_path)
    try:
        await store.create_file()
        target = tmp_path / "secret.txt"
        target.write_bytes(b"secret")
        os.symlink(target, store.base_dir / "link")

        for name in ("decrypted-missing", "link", "../secret.txt", ".."):
            with pytest.raises(ContentNotFoundError):
                await store.open_raw(name)
    finally:
        await store.shutdown()


@pytest.mark.asyncio
async def test_closed_store_rejects_operations(tmp_path: Path):
    store = make_store(tmp_path)
    await store.shutdown()
    await store.shutdown()

    with pytest.raises(RuntimeError, match="closed"):
        await store.create_file()


def test_config_validation(tmp_path: Path):
    with pytest.raises(ValueError, match="base_dir"):
        TempFileService(TempFileConfig(base_dir=""))
    with pytest.raises(ValueError, match="worker_threads"):
        TempFileService(TempFileConfig(base_dir=str(tmp_path), worker_threads=0))
