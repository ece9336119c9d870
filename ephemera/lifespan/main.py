from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from ephemera.core.dependencies import ServiceContainer, ServiceLifetime
from ephemera.core.events import EventKind, periodic_signal_loop
from ephemera.core.logger import setup_logging, shutdown_logging
from ephemera.core.settings import settings
from ephemera.services.event_bus import EventBusService
from ephemera.services.provider import DecryptedFileProviderService

EVENT_BUS_KEY = "event_bus_service"
PROVIDER_KEY = "decrypted_file_provider_service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    idle_stop = asyncio.Event()
    idle_task: asyncio.Task | None = None
    logging_ready = False
    try:
        setup_logging(settings.LOG_DIR, settings.DEBUG_MODE)
        logging_ready = True

        logger.debug("[LIFESPAN] Initialising service container...")

        app.state.services = ServiceContainer()

        logger.debug("[LIFESPAN] Registering services...")

        await app.state.services.register(
            EVENT_BUS_KEY,
            ServiceLifetime.SINGLETON,
            EventBusService.LifespanTasks.ctor,
            EventBusService.LifespanTasks.dtor,
        )
        events = await app.state.services.aget_by_key(EVENT_BUS_KEY)

        await app.state.services.register(
            PROVIDER_KEY,
            ServiceLifetime.SINGLETON,
            DecryptedFileProviderService.LifespanTasks.ctor,
            DecryptedFileProviderService.LifespanTasks.dtor,
            events,
        )
        # Eager: the memory-pressure listener must exist before any request.
        await app.state.services.aget_by_key(PROVIDER_KEY)

        if settings.IDLE_SIGNAL_INTERVAL_SECONDS > 0:
            idle_task = asyncio.create_task(
                periodic_signal_loop(
                    events,
                    EventKind.DEVICE_IDLE,
                    idle_stop,
                    interval_seconds=settings.IDLE_SIGNAL_INTERVAL_SECONDS,
                )
            )

        yield

    finally:
        logger.debug("[LIFESPAN] Shutting down...")

        idle_stop.set()
        if idle_task is not None:
            await idle_task

        services = getattr(app.state, "services", None)
        if services is not None:
            await services.destruct_all_singletons()
            app.state.services = None
            logger.debug("[LIFESPAN] Service container released.")

        logger.debug("[LIFESPAN] Application shutdown completed.")

        if logging_ready:
            await shutdown_logging()
