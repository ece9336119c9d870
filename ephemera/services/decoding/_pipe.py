from __future__ import annotations

import io
import threading


class BytePipe:
    """
    Bounded in-memory byte channel between one writer and one reader thread.

    - ``write`` blocks while the buffer holds ``capacity`` bytes.
    - ``readinto`` blocks until bytes arrive or the writer closes.
    - Closing the reader makes pending and future writes raise
      ``BrokenPipeError`` so the writer can release its source.
    - A writer may close with an error; the reader receives every byte
      written before it, then the error.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._writer_closed = False
        self._reader_closed = False
        self._error: BaseException | None = None
        self._max_buffered = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def buffered(self) -> int:
        with self._cond:
            return len(self._buffer)

    @property
    def max_buffered(self) -> int:
        """Highest number of bytes ever held at once."""
        with self._cond:
            return self._max_buffered

    @property
    def reader_closed(self) -> bool:
        with self._cond:
            return self._reader_closed

    def write(self, data: bytes | bytearray | memoryview) -> None:
        view = memoryview(data).cast("B")
        while view:
            with self._cond:
                while len(self._buffer) >= self._capacity and not self._reader_closed:
                    self._cond.wait()
                if self._reader_closed:
                    raise BrokenPipeError("Pipe reader is closed")
                if self._writer_closed:
                    raise ValueError("write to a closed pipe")
                room = self._capacity - len(self._buffer)
                self._buffer += view[:room]
                view = view[room:]
                self._max_buffered = max(self._max_buffered, len(self._buffer))
                self._cond.notify_all()

    def close_writer(self, error: BaseException | None = None) -> None:
        with self._cond:
            if self._writer_closed:
                return
            self._writer_closed = True
            self._error = error
            self._cond.notify_all()

    def readinto(self, b) -> int:
        out = memoryview(b).cast("B")
        if not out:
            return 0
        with self._cond:
            while not self._buffer and not self._writer_closed and not self._reader_closed:
                self._cond.wait()
            if self._reader_closed:
                raise ValueError("read from a closed pipe")
            if not self._buffer:
                if self._error is not None:
                    raise self._error
                return 0
            n = min(len(out), len(self._buffer))
            out[:n] = self._buffer[:n]
            del self._buffer[:n]
            self._cond.notify_all()
            return n

    def close_reader(self) -> None:
        with self._cond:
            if self._reader_closed:
                return
            self._reader_closed = True
            self._buffer.clear()
            self._cond.notify_all()


class PipeReader(io.RawIOBase):
    """Read end of a ``BytePipe`` exposed through the regular binary file API."""

    def __init__(self, pipe: BytePipe, name: str = "") -> None:
        super().__init__()
        self._pipe = pipe
        self.name = name

    @property
    def pipe(self) -> BytePipe:
        return self._pipe

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed pipe")
        return self._pipe.readinto(b)

    def close(self) -> None:
        if not self.closed:
            self._pipe.close_reader()
        super().close()
