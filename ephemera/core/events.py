"""
Host signal delivery.

The provider never talks to a concrete signal source; it depends on the
``EventSubscriber`` capability only. ``LocalEventBus`` is the in-process
implementation used by the application: events are queued from any thread
and delivered one at a time by a single dispatcher task running on the event
loop, which therefore acts as the control thread for every handler.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Protocol

from loguru import logger


class EventKind(str, Enum):
    DEVICE_IDLE = "device_idle"
    MEMORY_PRESSURE = "memory_pressure"


class MemoryPressureLevel(IntEnum):
    MODERATE = 10
    LOW = 20
    CRITICAL = 30
    COMPLETE = 40

    @classmethod
    def parse(cls, value: MemoryPressureLevel | int | str) -> MemoryPressureLevel:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError as exc:
                raise ValueError(
                    f"Unknown memory pressure level: {value!r}") from exc
        return cls(value)


@dataclass(frozen=True)
class Event:
    kind: EventKind
    payload: Any = None


type EventHandler = Callable[[Event], Awaitable[None] | None]


@dataclass(frozen=True, eq=False)
class SubscriptionHandle:
    kind: EventKind
    handler: EventHandler
    subscription_id: int

    def __repr__(self) -> str:
        return f"SubscriptionHandle({self.kind.value}#{self.subscription_id})"


class EventSubscriber(Protocol):
    def subscribe(self, kind: EventKind, handler: EventHandler) -> SubscriptionHandle:
        ...

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        ...


class LocalEventBus:
    """
    In-process event bus with single-dispatch, one-at-a-time delivery.

    - ``subscribe``/``unsubscribe``/``publish`` are safe from any thread.
    - Delivery happens on the loop passed to ``start`` (the control thread).
    - Each handler is awaited before the next event is taken from the queue,
      so handlers never run concurrently with each other.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[EventKind, list[SubscriptionHandle]] = {
            kind: [] for kind in EventKind
        }
        self._ids = itertools.count(1)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[Event | None] | None = None
        self._dispatcher: asyncio.Task | None = None

    async def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        logger.debug("[EVENTS] Event bus started")

    async def shutdown(self) -> None:
        if self._dispatcher is None or self._queue is None:
            return
        await self._queue.put(None)
        await self._dispatcher
        self._dispatcher = None
        self._queue = None
        self._loop = None
        logger.debug("[EVENTS] Event bus stopped")

    def subscribe(self, kind: EventKind, handler: EventHandler) -> SubscriptionHandle:
        with self._lock:
            handle = SubscriptionHandle(kind, handler, next(self._ids))
            self._handles[kind].append(handle)
        logger.debug("[EVENTS] Subscribed", handle=repr(handle))
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            handles = self._handles[handle.kind]
            if handle not in handles:
                logger.warning(
                    "[EVENTS] Unsubscribe for unknown handle ignored",
                    handle=repr(handle),
                )
                return False
            handles.remove(handle)
        logger.debug("[EVENTS] Unsubscribed", handle=repr(handle))
        return True

    def is_subscribed(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            return handle in self._handles[handle.kind]

    def subscriber_count(self, kind: EventKind) -> int:
        with self._lock:
            return len(self._handles[kind])

    def publish(self, kind: EventKind, payload: Any = None) -> None:
        if self._loop is None or self._queue is None:
            raise RuntimeError("LocalEventBus is not running")
        event = Event(kind, payload)
        queue = self._queue
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(queue.put_nowait, event)

    async def join(self) -> None:
        """Wait until every event published so far has been delivered."""
        if self._queue is not None:
            await self._queue.join()

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return
                await self._deliver(event)
            finally:
                queue.task_done()

    async def _deliver(self, event: Event) -> None:
        with self._lock:
            handles = list(self._handles[event.kind])
        for handle in handles:
            # A previous handler may have unsubscribed this one.
            if not self.is_subscribed(handle):
                continue
            try:
                result = handle.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "[EVENTS] Event handler failed",
                    kind=event.kind.value,
                    handle=repr(handle),
                )


async def periodic_signal_loop(
    bus: LocalEventBus,
    kind: EventKind,
    stop_event: asyncio.Event,
    interval_seconds: int,
    payload: Any = None,
) -> None:
    logger.debug(f"[EVENTS] Signal loop started: {kind.value}")
    try:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            try:
                bus.publish(kind, payload)
            except Exception:
                logger.exception("[EVENTS] Signal loop failed to publish")
    finally:
        logger.debug(f"[EVENTS] Signal loop stopped: {kind.value}")
