from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from loguru import logger

from ephemera.core.events import (
    Event,
    EventKind,
    EventSubscriber,
    MemoryPressureLevel,
    SubscriptionHandle,
)
from ephemera.core.settings import settings
from ephemera.core.shared.file_lock import release_file_lock, try_acquire_file_lock
from ephemera.services.temp_file import TempFileService


class RegistrationState(StrEnum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"


@dataclass(frozen=True)
class CleanupConfig:
    delete_threshold_seconds: float = 3 * 60
    critical_level: MemoryPressureLevel = MemoryPressureLevel.CRITICAL
    lock_path: str | None = None


class CleanupScheduler:
    """
    Age-threshold sweeper for the reserved temp directory.

    The device-idle listener is installed lazily when a file is created and
    removed again once an idle sweep leaves nothing behind. Memory pressure at
    or above the critical level always sweeps and drops the idle listener.

    The registration handle is the only shared mutable state; it is read and
    changed under ``_registration_lock`` because file creation happens on
    arbitrary threads while events arrive on the loop.
    """

    def __init__(
        self,
        store: TempFileService,
        events: EventSubscriber,
        config: CleanupConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config is None:
            config = CleanupConfig(
                delete_threshold_seconds=settings.FILE_DELETE_THRESHOLD_SECONDS,
                critical_level=MemoryPressureLevel.parse(
                    settings.MEMORY_PRESSURE_CRITICAL_LEVEL),
            )
        if config.delete_threshold_seconds <= 0:
            raise ValueError("delete_threshold_seconds must be > 0")
        self._store = store
        self._events = events
        self._config = config
        self._clock = clock
        base_dir = store.base_dir
        self._lock_path = (
            Path(config.lock_path)
            if config.lock_path
            else base_dir.parent / f".{base_dir.name}.cleanup.lock"
        )
        self._registration_lock = threading.Lock()
        self._idle_subscription: SubscriptionHandle | None = None
        self._memory_subscription: SubscriptionHandle | None = None
        self._creations = 0

    @property
    def state(self) -> RegistrationState:
        with self._registration_lock:
            if self._idle_subscription is None:
                return RegistrationState.UNREGISTERED
            return RegistrationState.REGISTERED

    @property
    def delete_threshold_seconds(self) -> float:
        return self._config.delete_threshold_seconds

    def start(self) -> None:
        with self._registration_lock:
            if self._memory_subscription is not None:
                return
            self._memory_subscription = self._events.subscribe(
                EventKind.MEMORY_PRESSURE, self._on_memory_pressure
            )

    async def shutdown(self) -> None:
        with self._registration_lock:
            handles = [self._idle_subscription, self._memory_subscription]
            self._idle_subscription = None
            self._memory_subscription = None
        for handle in handles:
            if handle is not None:
                self._events.unsubscribe(handle)
        logger.debug("[CLEANUP] Scheduler stopped")

    def notify_file_created(self) -> None:
        """Make sure the idle listener is installed; a no-op when it already is."""
        with self._registration_lock:
            self._creations += 1
            if self._idle_subscription is not None:
                return
            logger.debug("[CLEANUP] Registering temp file cleanup listener")
            self._idle_subscription = self._events.subscribe(
                EventKind.DEVICE_IDLE, self._on_device_idle
            )

    async def sweep(self, now: float | None = None) -> bool:
        """
        Delete every file older than the threshold.

        Returns True only if every file in the directory was old enough and
        was deleted. Failed deletions are logged and retried by a later sweep.
        """
        if now is None:
            now = self._clock()
        deletion_threshold = now - self._config.delete_threshold_seconds

        lock = await asyncio.to_thread(try_acquire_file_lock, self._lock_path)
        if lock is None:
            logger.info("[CLEANUP] Sweep skipped (another process holds the lock)")
            return False
        try:
            try:
                files = await self._store.list_files()
            except OSError as exc:
                logger.error("[CLEANUP] Sweep aborted (temp dir not listable)", error=str(exc))
                return False
            all_deleted = True
            for stored in files:
                if stored.mtime < deletion_threshold:
                    if not await self._store.delete_file(stored):
                        logger.error(
                            "[CLEANUP] Failed to delete temporary file", name=stored.name
                        )
                        all_deleted = False
                else:
                    logger.debug(
                        "[CLEANUP] Not deleting temp file (for another {:.2f} minutes)",
                        (stored.mtime - deletion_threshold) / 60,
                        name=stored.name,
                    )
                    all_deleted = False
            return all_deleted
        finally:
            await asyncio.to_thread(release_file_lock, lock)

    async def _on_device_idle(self, event: Event) -> None:
        if event.kind is not EventKind.DEVICE_IDLE:
            raise ValueError(f"Idle listener received unexpected event: {event.kind!r}")
        with self._registration_lock:
            handle = self._idle_subscription
            creations = self._creations
        if handle is None:
            return

        logger.debug("[CLEANUP] Cleaning up temp files")
        all_deleted = await self.sweep()
        if not all_deleted:
            return

        with self._registration_lock:
            if self._idle_subscription is not handle:
                return
            if self._creations != creations:
                logger.debug("[CLEANUP] File created during sweep; keeping listener")
                return
            logger.debug("[CLEANUP] Unregistering temp file cleanup listener")
            self._events.unsubscribe(handle)
            self._idle_subscription = None

    async def _on_memory_pressure(self, event: Event) -> None:
        level = MemoryPressureLevel.parse(event.payload)
        if level < self._config.critical_level:
            return

        with self._registration_lock:
            handle, self._idle_subscription = self._idle_subscription, None
            if handle is not None:
                self._events.unsubscribe(handle)

        logger.info("[CLEANUP] Memory pressure sweep", level=level.name)
        await self.sweep()
