from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, NoReturn

from loguru import logger

from ephemera.core.events import EventSubscriber, MemoryPressureLevel
from ephemera.core.settings import settings
from ephemera.services import BaseService
from ephemera.services.cleanup import CleanupConfig, CleanupScheduler
from ephemera.services.decoding import DecodingConfig, DecodingGateway
from ephemera.services.reference import ContentReference, ReferenceCodec
from ephemera.services.temp_file import StoredFile, TempFileConfig, TempFileService


class DecryptedFileProviderService(BaseService):
    """
    Ephemeral decoded-content file provider.

    Producer side: ``create_provided_file`` / ``write_provided_file`` /
    ``get_reference_for_file``. Consumer side: ``open_for_read`` /
    ``media_type_of``. Files are swept by the cleanup scheduler a few
    minutes after their last modification.
    """

    class LifespanTasks(BaseService.LifespanTasks):
        @staticmethod
        async def ctor(
            events: EventSubscriber,
            base_dir: str | None = None,
            authority: str | None = None,
            delete_threshold_seconds: int | None = None,
            worker_threads: int | None = None,
            pipe_capacity_bytes: int | None = None,
            chunk_bytes: int | None = None,
            critical_level: MemoryPressureLevel | str | None = None,
        ) -> DecryptedFileProviderService:
            # Unset arguments follow the settings current at construction time.
            if base_dir is None:
                base_dir = str(Path(settings.TMP_DIR) / settings.DECRYPTED_DIR_NAME)
            if authority is None:
                authority = settings.REFERENCE_AUTHORITY
            if delete_threshold_seconds is None:
                delete_threshold_seconds = settings.FILE_DELETE_THRESHOLD_SECONDS
            if worker_threads is None:
                worker_threads = settings.TMP_WORKER_THREADS
            if pipe_capacity_bytes is None:
                pipe_capacity_bytes = settings.DECODE_PIPE_CAPACITY_BYTES
            if chunk_bytes is None:
                chunk_bytes = settings.DECODE_CHUNK_BYTES
            if critical_level is None:
                critical_level = settings.MEMORY_PRESSURE_CRITICAL_LEVEL
            store = TempFileService(
                TempFileConfig(base_dir=base_dir, worker_threads=worker_threads)
            )
            service = DecryptedFileProviderService(
                store=store,
                codec=ReferenceCodec(store.base_dir, authority),
                events=events,
                gateway_config=DecodingConfig(
                    pipe_capacity_bytes=pipe_capacity_bytes,
                    chunk_bytes=chunk_bytes,
                ),
                cleanup_config=CleanupConfig(
                    delete_threshold_seconds=delete_threshold_seconds,
                    critical_level=MemoryPressureLevel.parse(critical_level),
                ),
            )
            service.start()
            return service

        @staticmethod
        async def dtor(instance: DecryptedFileProviderService) -> None:
            await instance.shutdown()

    def __init__(
        self,
        store: TempFileService,
        codec: ReferenceCodec,
        events: EventSubscriber,
        gateway_config: DecodingConfig | None = None,
        scheduler: CleanupScheduler | None = None,
        cleanup_config: CleanupConfig | None = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self._gateway = DecodingGateway(store, codec, gateway_config)
        self._scheduler = scheduler or CleanupScheduler(store, events, cleanup_config)
        self._events = events

    @property
    def store(self) -> TempFileService:
        return self._store

    @property
    def scheduler(self) -> CleanupScheduler:
        return self._scheduler

    def start(self) -> None:
        self._scheduler.start()
        logger.debug("[PROVIDER] Provider started", base_dir=str(self._store.base_dir))

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()
        await self._store.shutdown()
        logger.debug("[PROVIDER] Provider shutdown completed")

    # Producer interface

    async def create_provided_file(self) -> StoredFile:
        self._scheduler.notify_file_created()
        return await self._store.create_file()

    async def write_provided_file(
        self,
        stored: StoredFile,
        content: bytes | bytearray | memoryview,
    ) -> StoredFile:
        return await self._store.write_file(stored, content)

    def get_reference_for_file(
        self,
        stored: StoredFile,
        encoding: str | None,
        media_type: str,
    ) -> ContentReference:
        return self._codec.encode(stored, encoding, media_type)

    # Consumer interface

    async def open_for_read(
        self,
        reference: ContentReference | str,
        mode: str = "r",
    ) -> BinaryIO:
        return await self._gateway.open(reference, mode)

    def media_type_of(self, reference: ContentReference | str) -> str:
        return self._gateway.media_type(reference)

    def delete(self, reference: ContentReference | str) -> NoReturn:
        self._gateway.delete(reference)
