from __future__ import annotations

import asyncio
import inspect
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional, TypeVar, get_type_hints

from fastapi import Request
from fastapi.params import Depends
from loguru import logger

T = TypeVar("T")

# A ctor returns the instance directly or an awaitable of it.
Ctor = Callable[..., Any]
Dtor = Optional[Callable[[Any], Optional[Awaitable[None]]]]


class ServiceLifetime(IntEnum):
    """
    How long a registered service lives.

    Provider services own threads, executors and event subscriptions, so the
    container only hands out process-wide singletons.
    """

    SINGLETON = 0


def _fail(exc_type: type[Exception], msg: str) -> Exception:
    logger.error(f"[DI] {msg}")
    return exc_type(msg)


@dataclass(eq=False)
class _Registration:
    key: Optional[str]
    service_type: Optional[type]
    ctor: Ctor
    dtor: Dtor
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    instance: Any = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def label(self) -> str:
        if self.key is not None:
            return self.key
        return getattr(self.service_type, "__name__", repr(self.service_type))

    async def resolve(self) -> Any:
        if self.instance is not None:
            return self.instance
        async with self.lock:
            if self.instance is None:
                if inspect.iscoroutinefunction(self.ctor):
                    built = await self.ctor(*self.args, **self.kwargs)
                else:
                    # Blocking factories stay off the event loop.
                    built = await asyncio.to_thread(self.ctor, *self.args, **self.kwargs)
                    if inspect.isawaitable(built):
                        built = await built
                self.instance = built
                logger.debug(f"[DI] Singleton built: {self.label}")
        return self.instance

    async def release(self) -> None:
        instance, self.instance = self.instance, None
        if instance is None or self.dtor is None:
            return
        outcome = self.dtor(instance)
        if inspect.isawaitable(outcome):
            await outcome


class ServiceContainer:
    """
    Registry of the singletons that make up the running application.

    Services are looked up either by the key they were registered under or by
    the return type declared on their ctor. Instances are built lazily on
    first lookup (once, even under concurrent lookups) and torn down in reverse
    registration order. A container belongs to the process that created it.
    """

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []
        self._by_key: dict[str, _Registration] = {}
        self._by_type: dict[type, list[_Registration]] = {}
        self._pid = os.getpid()
        self._lock = asyncio.Lock()
        self.destructing = False

    def _check_process(self) -> None:
        if self._pid != os.getpid():
            raise _fail(
                RuntimeError,
                f"ServiceContainer accessed from different process "
                f"(created in PID {self._pid}, now PID {os.getpid()})",
            )

    @staticmethod
    def _declared_type(ctor: Ctor) -> Optional[type]:
        try:
            declared = get_type_hints(ctor).get("return")
        except Exception:
            declared = None
        return declared if isinstance(declared, type) else None

    async def register(
            self,
            key: Optional[str],
            lifetime: ServiceLifetime,
            ctor: Ctor,
            dtor: Dtor,
            *args: Any,
            **kwargs: Any,
    ) -> None:
        """
        Register a singleton; ``args``/``kwargs`` are handed to ``ctor`` when
        the instance is first requested. Anonymous services (``key=None``) are
        only reachable by type, so their ctor needs a return annotation.
        """
        self._check_process()
        if lifetime is not ServiceLifetime.SINGLETON:
            raise ValueError(f"Unsupported service lifetime: {lifetime!r}")
        if dtor is not None and not callable(dtor):
            raise _fail(
                TypeError,
                f"Invalid destructor for service {key!r}: got {type(dtor)!r}",
            )

        service_type = self._declared_type(ctor)
        if key is None and service_type is None:
            raise _fail(
                RuntimeError,
                "Anonymous services must declare a return type on their ctor",
            )

        async with self._lock:
            if self.destructing:
                raise _fail(RuntimeError, "Cannot register services while destructing")
            if key is not None and key in self._by_key:
                raise _fail(RuntimeError, f"Duplicate service registration for key: {key}")

            registration = _Registration(key, service_type, ctor, dtor, args, kwargs)
            self._registrations.append(registration)
            if key is not None:
                self._by_key[key] = registration
            if service_type is not None:
                self._by_type.setdefault(service_type, []).append(registration)
        logger.debug("[DI] Registered {}", registration.label, service_type=str(service_type))

    async def _resolve(self, registration: _Registration) -> Any:
        self._check_process()
        if self.destructing:
            raise _fail(
                RuntimeError,
                f"Service '{registration.label}' requested while container is destructing",
            )
        return await registration.resolve()

    async def aget_by_key(self, key: str) -> Any:
        registration = self._by_key.get(key)
        if registration is None:
            raise _fail(RuntimeError, f"Requesting unregistered service: {key}")
        return await self._resolve(registration)

    async def aget_by_type(self, service_type: type[T]) -> T:
        candidates = self._by_type.get(service_type, [])
        if not candidates:
            raise _fail(RuntimeError, f"No service registered for type: {service_type!r}")
        if len(candidates) > 1:
            raise _fail(
                RuntimeError,
                f"Multiple services registered for type {service_type!r}; inject by key",
            )
        return await self._resolve(candidates[0])

    async def destruct_all_singletons(self) -> None:
        """Release every built singleton, newest first; dtor failures are logged."""
        async with self._lock:
            if self.destructing:
                return
            self.destructing = True
            try:
                for registration in reversed(self._registrations):
                    try:
                        await registration.release()
                    except Exception:
                        logger.exception(f"[DI] Destructor failed: {registration.label}")
            finally:
                self.destructing = False
        logger.debug("[DI] All singletons released")


def Inject(target: Any) -> Depends:
    """
    FastAPI dependency resolving a registered service from ``app.state.services``.

        @router.get("/files/type")
        async def endpoint(provider: DecryptedFileProviderService = Inject(DecryptedFileProviderService)):
            ...

    ``target`` is a registration key or a service type.
    """
    if not isinstance(target, (str, type)):
        raise TypeError("Inject() expects either a service key (str) or a service type.")

    async def resolve_service(request: Request) -> Any:
        services: Optional[ServiceContainer] = getattr(request.app.state, "services", None)
        if services is None:
            raise _fail(RuntimeError, "Service container not initialized on app state")
        if isinstance(target, str):
            return await services.aget_by_key(target)
        return await services.aget_by_type(target)

    resolve_service.__name__ = f"inject_{target if isinstance(target, str) else target.__name__}"
    resolve_service.__qualname__ = resolve_service.__name__
    return Depends(resolve_service)
