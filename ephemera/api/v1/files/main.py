from __future__ import annotations

from collections.abc import Iterator
from typing import BinaryIO

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask

from ephemera.core.dependencies import Inject
from ephemera.core.settings import settings
from ephemera.services.provider import DecryptedFileProviderService

router = APIRouter(prefix="/files")


def _iter_stream(stream: BinaryIO, chunk_bytes: int) -> Iterator[bytes]:
    # Runs in the threadpool; closing stops any drain thread behind the stream.
    try:
        while chunk := stream.read(chunk_bytes):
            yield chunk
    except OSError:
        logger.exception("[PROVIDER] Stream aborted while serving content")
        raise
    finally:
        stream.close()


@router.post("", status_code=201)
async def create_file(
        request: Request,
        media_type: str = Query(..., min_length=1),
        encoding: str | None = Query(None),
        provider: DecryptedFileProviderService = Inject(DecryptedFileProviderService),
):
    """Store a payload and hand back the reference a consumer can open."""
    payload = await request.body()
    stored = await provider.create_provided_file()
    stored = await provider.write_provided_file(stored, payload)
    reference = provider.get_reference_for_file(stored, encoding, media_type)
    return JSONResponse(
        status_code=201,
        content={
            "reference": reference.uri,
            "media_type": reference.media_type,
            "encoding": reference.encoding,
        },
    )


@router.get("/content")
async def read_content(
        reference: str = Query(..., min_length=1),
        provider: DecryptedFileProviderService = Inject(DecryptedFileProviderService),
):
    media_type = provider.media_type_of(reference)
    stream = await provider.open_for_read(reference)
    return StreamingResponse(
        _iter_stream(stream, settings.DECODE_CHUNK_BYTES),
        media_type=media_type,
        background=BackgroundTask(stream.close),
    )


@router.get("/type")
async def read_media_type(
        reference: str = Query(..., min_length=1),
        provider: DecryptedFileProviderService = Inject(DecryptedFileProviderService),
):
    return {"media_type": provider.media_type_of(reference)}


@router.delete("/content")
async def delete_content(
        reference: str = Query(..., min_length=1),
        provider: DecryptedFileProviderService = Inject(DecryptedFileProviderService),
):
    provider.delete(reference)
