from __future__ import annotations

import errno
import os
import stat
import uuid
from pathlib import Path
from typing import BinaryIO, ClassVar

from loguru import logger

from ephemera.core.errors import ContentNotFoundError

from ._types import _ScannedFileEntry

_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)


def _restrict_mode(path: Path, mode: int) -> None:
    try:
        os.chmod(path, mode)
    except FileNotFoundError:
        return
    except OSError:
        logger.exception("[TMP] Failed to set permissions", name=path.name, mode=oct(mode))


class TempFileFileOpsMixin:
    """Blocking filesystem primitives; always called on the service executor."""

    _base_dir: Path
    FILE_PREFIX: ClassVar[str]

    @staticmethod
    def is_plain_name(name: str) -> bool:
        if not name or name in (".", ".."):
            return False
        if "/" in name or "\\" in name or "\x00" in name:
            return False
        return True

    def _ensure_base_dir(self) -> None:
        if self._base_dir.is_dir():
            return
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            # Not fatal here; the following create reports the real error.
            logger.exception(
                "[TMP] Error creating directory", path=str(self._base_dir)
            )
            return
        _restrict_mode(self._base_dir, 0o700)

    def _create_unique(self) -> tuple[str, float]:
        self._ensure_base_dir()
        flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | _NOFOLLOW
        while True:
            name = f"{self.FILE_PREFIX}{uuid.uuid4().hex}"
            path = self._base_dir / name
            try:
                fd = os.open(path, flags, 0o600)
            except FileExistsError:
                continue
            try:
                mtime = os.fstat(fd).st_mtime
            finally:
                os.close(fd)
            _restrict_mode(path, 0o600)
            return name, mtime

    def _write_file(self, name: str, data: bytes) -> tuple[float, int]:
        path = self._base_dir / name
        flags = os.O_WRONLY | os.O_TRUNC | _NOFOLLOW
        try:
            fd = os.open(path, flags)
        except FileNotFoundError as exc:
            raise ContentNotFoundError(name) from exc
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                raise ValueError(
                    f"Refusing to write symlink temp file '{name}'"
                ) from exc
            raise
        try:
            with os.fdopen(fd, "wb", closefd=False) as handle:
                handle.write(data)
                handle.flush()
            st = os.fstat(fd)
        finally:
            os.close(fd)
        return st.st_mtime, st.st_size

    def _open_raw(self, name: str) -> BinaryIO:
        path = self._base_dir / name
        if path.parent != self._base_dir:
            raise ContentNotFoundError(name)
        try:
            fd = os.open(path, os.O_RDONLY | _NOFOLLOW)
        except FileNotFoundError as exc:
            raise ContentNotFoundError(name) from exc
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                logger.warning("[TMP] Refusing to open symlink temp file", name=name)
                raise ContentNotFoundError(name) from exc
            raise
        try:
            if not stat.S_ISREG(os.fstat(fd).st_mode):
                raise ContentNotFoundError(name)
            return os.fdopen(fd, "rb")
        except BaseException:
            os.close(fd)
            raise

    def _delete_file(self, name: str) -> bool:
        path = self._base_dir / name
        try:
            st = path.lstat()
            if stat.S_ISLNK(st.st_mode):
                logger.warning(
                    "[TMP] Refusing to delete symlink temp file", name=name
                )
                return False
            if not stat.S_ISREG(st.st_mode):
                logger.warning("[TMP] Refusing to delete non-regular file", name=name)
                return False
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError:
            logger.exception("[TMP] Failed to delete temporary file", name=name)
            return False
        return True

    def _scan_files(self) -> list[_ScannedFileEntry]:
        entries: list[_ScannedFileEntry] = []
        try:
            paths = list(self._base_dir.iterdir())
        except FileNotFoundError:
            return entries
        except OSError:
            logger.exception("[TMP] Failed scanning temp dir")
            raise
        for path in paths:
            try:
                st = path.lstat()
            except FileNotFoundError:
                continue
            except Exception:
                logger.exception("[TMP] Failed to stat file", name=path.name)
                continue
            if stat.S_ISLNK(st.st_mode):
                logger.warning("[TMP] Ignoring symlink in temp dir", name=path.name)
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            entries.append((path.name, st.st_mtime, st.st_size))
        return entries
