from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from loguru import logger


def try_acquire_file_lock(path: Path) -> Optional[FileLock]:
    """
    Try to acquire an exclusive, non-blocking inter-process lock.

    Returns the held lock, or None if another holder has it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    # Acquired and released on worker threads that may differ.
    lock = FileLock(str(path), thread_local=False)
    try:
        lock.acquire(timeout=0)
    except Timeout:
        return None
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.exception("[LOCK] Failed to set lock file permissions", path=str(path))
    return lock


def release_file_lock(handle: Optional[FileLock]) -> None:
    if handle is None:
        return
    try:
        handle.release()
    except Exception:
        logger.exception("[LOCK] Failed to release file lock")
