from __future__ import annotations

import time
import uuid

from loguru import logger
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ephemera.core.logger import request_id_ctx

_MAX_REQUEST_ID_LEN = 128
_REQUEST_ID_HEADER = b"x-request-id"


def _normalize_request_id(raw: str | None) -> str:
    if not raw:
        return str(uuid.uuid4())
    candidate = raw.strip()
    if not candidate or len(candidate) > _MAX_REQUEST_ID_LEN:
        return str(uuid.uuid4())
    for ch in candidate:
        if not (ch.isalnum() or ch in "-_."):
            return str(uuid.uuid4())
    return candidate


class RequestLoggingMiddleware:
    """
    Logs each HTTP request once when it starts and once when its body has been
    fully sent, including how many body bytes were streamed. Content responses
    are streamed, so completion is only known at the last body message.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        method = scope.get("method", "")
        path = scope.get("path", "")
        client = scope.get("client")

        raw_request_id: str | None = None
        for key, value in scope.get("headers", []):
            if key.lower() == _REQUEST_ID_HEADER:
                raw_request_id = value.decode("latin-1")
                break
        request_id = _normalize_request_id(raw_request_id)

        token = request_id_ctx.set(request_id)
        status_code = 0
        bytes_sent = 0
        finished = False

        def _log_finished(failed: bool) -> None:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            if failed or status_code >= 500:
                log_fn = logger.error
            elif status_code >= 400:
                log_fn = logger.warning
            else:
                log_fn = logger.info
            log_fn(
                "Request {}: {} {}",
                "failed" if failed or status_code >= 400 else "completed",
                method,
                path,
                status_code=status_code,
                duration_ms=duration_ms,
                bytes_sent=bytes_sent,
            )

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, bytes_sent, finished
            if message["type"] == "http.response.start":
                headers = message.get("headers")
                if headers is None:
                    headers = []
                    message["headers"] = headers
                MutableHeaders(raw=headers)["X-Request-ID"] = request_id
                status_code = int(message.get("status", 0))
            elif message["type"] == "http.response.body":
                bytes_sent += len(message.get("body", b""))
                if not message.get("more_body", False) and not finished:
                    finished = True
                    _log_finished(failed=False)
            await send(message)

        try:
            logger.info(
                "Request started: {} {}",
                method,
                path,
                client=client[0] if client else None,
            )
            try:
                await self.app(scope, receive, send_wrapper)
            except Exception:
                if not finished:
                    finished = True
                    logger.exception("Request aborted: {} {}", method, path)
                    _log_finished(failed=True)
                raise
        finally:
            request_id_ctx.reset(token)
