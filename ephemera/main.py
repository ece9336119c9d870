from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ephemera.api import router
from ephemera.core.settings import settings
from ephemera.lifespan import lifespan
from ephemera.middleware.exception import register_exception_handlers
from ephemera.middleware.logging import RequestLoggingMiddleware


def create_application() -> FastAPI:
    app = FastAPI(title=settings.app_name,
                  version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_application()
