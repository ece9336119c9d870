from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import BinaryIO, NoReturn

from loguru import logger

from ephemera.core.errors import (
    ContentUnavailableError,
    StreamDecodeError,
    UnsupportedOperationError,
)
from ephemera.core.settings import settings
from ephemera.services.reference import ContentReference, ReferenceCodec, TransferEncoding
from ephemera.services.temp_file import TempFileService

from ._decoders import Base64StreamDecoder, QuotedPrintableStreamDecoder, StreamDecoder
from ._pipe import BytePipe, PipeReader

# Tags that mean "stored bytes are already the content".
_IDENTITY_TAGS = frozenset({"none", "identity", "7bit", "8bit", "binary"})
_READ_MODES = frozenset({"r", "rb"})


@dataclass(frozen=True)
class DecodingConfig:
    pipe_capacity_bytes: int = 64 * 1024
    chunk_bytes: int = 8 * 1024


class DecodedStream(PipeReader):
    """Readable handle over decoded bytes produced by a background drain thread."""

    def __init__(self, pipe: BytePipe, drain: threading.Thread, name: str) -> None:
        super().__init__(pipe, name=name)
        self._drain = drain

    @property
    def drain_thread(self) -> threading.Thread:
        return self._drain


def _drain(
    raw: BinaryIO,
    decoder: StreamDecoder,
    pipe: BytePipe,
    chunk_bytes: int,
    name: str,
) -> None:
    error: BaseException | None = None
    try:
        with raw:
            while not pipe.reader_closed:
                chunk = raw.read(chunk_bytes)
                if not chunk:
                    pipe.write(decoder.finish())
                    break
                decoded = decoder.feed(chunk)
                if decoded:
                    pipe.write(decoded)
    except BrokenPipeError:
        logger.debug("[DECODE] Consumer closed stream early", name=name)
    except StreamDecodeError as exc:
        logger.warning("[DECODE] Malformed encoded content", name=name, error=str(exc))
        error = exc
    except Exception as exc:
        logger.exception("[DECODE] Drain failed", name=name)
        error = StreamDecodeError(f"Failed reading stored content: {exc}")
        error.__cause__ = exc
    finally:
        pipe.close_writer(error)


class DecodingGateway:
    """
    Serves the decoded byte stream behind a content reference.

    Without a recognised transfer encoding the raw file handle is returned
    as-is. Otherwise a drain thread reads the raw file through a streaming
    decoder into a bounded pipe, and the caller gets the pipe's read end.
    """

    def __init__(
        self,
        store: TempFileService,
        codec: ReferenceCodec,
        config: DecodingConfig | None = None,
    ) -> None:
        if config is None:
            config = DecodingConfig(
                pipe_capacity_bytes=settings.DECODE_PIPE_CAPACITY_BYTES,
                chunk_bytes=settings.DECODE_CHUNK_BYTES,
            )
        if config.pipe_capacity_bytes < 1:
            raise ValueError("pipe_capacity_bytes must be >= 1")
        if config.chunk_bytes < 1:
            raise ValueError("chunk_bytes must be >= 1")
        self._store = store
        self._codec = codec
        self._config = config
        self._drain_ids = itertools.count(1)

    async def open(
        self,
        reference: ContentReference | str,
        mode: str = "r",
    ) -> BinaryIO:
        if mode not in _READ_MODES:
            raise UnsupportedOperationError(f"Unsupported open mode: {mode!r}")
        resolved = self._codec.decode(reference)
        encoding = TransferEncoding.recognize(resolved.encoding)
        raw = await self._store.open_raw(resolved.path.name)

        if encoding is None:
            tag = (resolved.encoding or "").strip().lower()
            if tag and tag not in _IDENTITY_TAGS:
                logger.debug(
                    "[DECODE] Unsupported encoding, returning raw stream",
                    encoding=resolved.encoding,
                )
            return raw

        try:
            return self._start_drain(raw, self._new_decoder(encoding), resolved.path.name)
        except (OSError, RuntimeError, MemoryError) as exc:
            raw.close()
            logger.error(
                "[DECODE] Could not set up decoding pipe",
                name=resolved.path.name,
                error=str(exc),
            )
            raise ContentUnavailableError(
                f"Content '{resolved.path.name}' is temporarily unavailable"
            ) from exc

    def media_type(self, reference: ContentReference | str) -> str:
        return self._codec.decode(reference).media_type

    def delete(self, reference: ContentReference | str) -> NoReturn:
        raise UnsupportedOperationError(
            "Decoded content cannot be deleted through the consumer interface"
        )

    @staticmethod
    def _new_decoder(encoding: TransferEncoding) -> StreamDecoder:
        if encoding is TransferEncoding.BASE64:
            return Base64StreamDecoder()
        return QuotedPrintableStreamDecoder()

    def _start_drain(self, raw: BinaryIO, decoder: StreamDecoder, name: str) -> DecodedStream:
        pipe = BytePipe(self._config.pipe_capacity_bytes)
        drain = threading.Thread(
            target=_drain,
            args=(raw, decoder, pipe, self._config.chunk_bytes, name),
            name=f"decode-drain-{next(self._drain_ids)}",
            daemon=True,
        )
        drain.start()
        return DecodedStream(pipe, drain, name)
