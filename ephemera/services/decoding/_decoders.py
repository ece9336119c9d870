from __future__ import annotations

import binascii
import re
from typing import Protocol

from ephemera.core.errors import StreamDecodeError

_B64_WHITESPACE = re.compile(rb"[ \t\r\n]+")
_B64_INVALID = re.compile(rb"[^A-Za-z0-9+/=]")
# "=" must start a hex escape or a soft line break.
_QP_BAD_ESCAPE = re.compile(rb"=(?![0-9A-Fa-f]{2}|\r?\n|\r?\Z)")
# Transport padding may sit between a soft-break "=" and the line end.
_QP_SOFT_BREAK_PADDING = re.compile(rb"=[ \t]+(?=\r?\n|\Z)")
_QP_MAX_PENDING = 64 * 1024


class StreamDecoder(Protocol):
    def feed(self, chunk: bytes) -> bytes:
        ...

    def finish(self) -> bytes:
        ...


class Base64StreamDecoder:
    """Incremental base64 decoder; MIME line breaks are ignored."""

    def __init__(self) -> None:
        self._pending = b""
        self._padded = False
        self._offset = 0

    def feed(self, chunk: bytes) -> bytes:
        data = _B64_WHITESPACE.sub(b"", chunk)
        if not data:
            return b""
        bad = _B64_INVALID.search(data)
        if bad is not None:
            raise StreamDecodeError(
                f"Invalid base64 character {bad.group()!r} near byte {self._offset + bad.start()}"
            )
        if self._padded:
            raise StreamDecodeError("Base64 data continues after padding")
        self._offset += len(data)

        data = self._pending + data
        usable = len(data) - len(data) % 4
        quanta, self._pending = data[:usable], data[usable:]
        if not quanta:
            return b""
        return self._decode(quanta)

    def finish(self) -> bytes:
        if self._pending:
            raise StreamDecodeError(
                f"Truncated base64 input ({len(self._pending)} dangling characters)"
            )
        return b""

    def _decode(self, quanta: bytes) -> bytes:
        if b"=" in quanta[:-2] or (quanta.endswith(b"=") and self._pending):
            raise StreamDecodeError("Base64 padding in the middle of the data")
        try:
            decoded = binascii.a2b_base64(quanta, strict_mode=True)
        except binascii.Error as exc:
            raise StreamDecodeError(f"Malformed base64 data: {exc}") from exc
        self._padded = quanta.endswith(b"=")
        return decoded


class QuotedPrintableStreamDecoder:
    """Incremental quoted-printable decoder working on whole lines."""

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> bytes:
        data = self._pending + chunk
        cut = data.rfind(b"\n") + 1
        if cut == 0 and len(data) > _QP_MAX_PENDING:
            cut = self._safe_cut(data)
        ready, self._pending = data[:cut], data[cut:]
        if not ready:
            return b""
        return self._decode(ready)

    def finish(self) -> bytes:
        data, self._pending = self._pending, b""
        if not data:
            return b""
        return self._decode(data)

    @staticmethod
    def _safe_cut(data: bytes) -> int:
        # Never split "=XX" or "=  \r\n" across two decode calls.
        stripped = data.rstrip(b" \t")
        tail_start = max(0, len(stripped) - 2)
        eq = stripped.find(b"=", tail_start)
        return eq if eq != -1 else len(data)

    @staticmethod
    def _decode(data: bytes) -> bytes:
        data = _QP_SOFT_BREAK_PADDING.sub(b"=", data)
        bad = _QP_BAD_ESCAPE.search(data)
        if bad is not None:
            raise StreamDecodeError(
                f"Invalid quoted-printable escape {data[bad.start():bad.start() + 3]!r}"
            )
        return binascii.a2b_qp(data)
