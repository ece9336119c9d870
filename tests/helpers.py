from __future__ import annotations

import os
import time
from pathlib import Path

from ephemera.core.events import LocalEventBus
from ephemera.services.reference import ReferenceCodec
from ephemera.services.temp_file import StoredFile, TempFileConfig, TempFileService

AUTHORITY = "test.decryptedfileprovider"


def age_file(path: Path, seconds: float, now: float | None = None) -> float:
    """Backdate ``path`` so its modification time is ``seconds`` before ``now``."""
    if now is None:
        now = time.time()
    ts = now - seconds
    os.utime(path, (ts, ts))
    return ts


def make_store(tmp_path: Path) -> TempFileService:
    return TempFileService(
        TempFileConfig(base_dir=str(tmp_path / "cache" / "decrypted"), worker_threads=2)
    )


def make_codec(store: TempFileService) -> ReferenceCodec:
    return ReferenceCodec(store.base_dir, AUTHORITY)


async def make_bus() -> LocalEventBus:
    bus = LocalEventBus()
    await bus.start()
    return bus


async def store_payload(store: TempFileService, payload: bytes) -> StoredFile:
    stored = await store.create_file()
    return await store.write_file(stored, payload)
