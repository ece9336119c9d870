from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import BinaryIO

from loguru import logger

from ephemera.core.errors import ContentNotFoundError
from ephemera.core.settings import settings

from ._file_ops import TempFileFileOpsMixin
from ._types import StoredFile


@dataclass(frozen=True)
class TempFileConfig:
    base_dir: str
    worker_threads: int = 2


class TempFileService(TempFileFileOpsMixin):
    """
    Owner of the reserved temporary-files directory.

    - Creates uniquely named files (``decrypted-<hex>``) with owner-only
      permissions.
    - Lists and deletes regular files; symlinks are never followed.
    - Holds no metadata: everything a consumer needs travels in the
      content reference.
    """

    FILE_PREFIX = "decrypted-"

    @classmethod
    def from_settings(cls) -> TempFileService:
        return cls(
            TempFileConfig(
                base_dir=str(Path(settings.TMP_DIR) / settings.DECRYPTED_DIR_NAME),
                worker_threads=settings.TMP_WORKER_THREADS,
            )
        )

    def __init__(self, config: TempFileConfig) -> None:
        self._validate_config(config)
        self._config = config
        self._base_dir = Path(config.base_dir).expanduser().resolve()
        self._executor = ThreadPoolExecutor(
            max_workers=config.worker_threads,
            thread_name_prefix="temp-files",
        )
        self._closed = False
        logger.debug("[TMP] TempFileService initialized", base_dir=str(self._base_dir))

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @staticmethod
    def _validate_config(config: TempFileConfig) -> None:
        if not config.base_dir:
            raise ValueError("base_dir must be non-empty")
        if config.worker_threads < 1:
            raise ValueError("worker_threads must be >= 1")

    async def create_file(self) -> StoredFile:
        self._assert_open()
        name, mtime = await self._run_in_executor(self._create_unique)
        logger.debug("[TMP] Created temp file", name=name)
        return StoredFile(name=name, directory=self._base_dir, mtime=mtime)

    async def write_file(
        self,
        stored: StoredFile,
        content: bytes | bytearray | memoryview,
    ) -> StoredFile:
        """Replace the payload of ``stored``; the file must still exist."""
        self._assert_open()
        self._assert_owned(stored)
        data = bytes(content)
        mtime, size = await self._run_in_executor(self._write_file, stored.name, data)
        return StoredFile(
            name=stored.name, directory=self._base_dir, mtime=mtime, size=size
        )

    async def list_files(self) -> list[StoredFile]:
        self._assert_open()
        entries = await self._run_in_executor(self._scan_files)
        return [
            StoredFile(name=name, directory=self._base_dir, mtime=mtime, size=size)
            for name, mtime, size in entries
        ]

    async def delete_file(self, stored: StoredFile) -> bool:
        self._assert_open()
        if not self._is_owned(stored):
            logger.warning(
                "[TMP] Refusing to delete file outside temp dir", name=stored.name
            )
            return False
        return await self._run_in_executor(self._delete_file, stored.name)

    async def open_raw(self, name: str) -> BinaryIO:
        """Open a stored file for raw reading; raises ContentNotFoundError if gone."""
        self._assert_open()
        if not self.is_plain_name(name):
            raise ContentNotFoundError(name)
        return await self._run_in_executor(self._open_raw, name)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            partial(self._executor.shutdown, wait=True, cancel_futures=True),
        )
        logger.debug("[TMP] TempFileService shutdown completed")

    def _assert_open(self) -> None:
        if self._closed:
            raise RuntimeError("TempFileService is closed")

    def _is_owned(self, stored: StoredFile) -> bool:
        return stored.directory == self._base_dir and self.is_plain_name(stored.name)

    def _assert_owned(self, stored: StoredFile) -> None:
        if not self._is_owned(stored):
            raise ValueError(
                f"File '{stored.name}' is not inside the reserved temp directory"
            )

    async def _run_in_executor(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)
