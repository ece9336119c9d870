from __future__ import annotations

from abc import ABC, abstractmethod


class BaseService(ABC):
    """
    Base class for services held by the service container.

    Services are singletons named with the suffix "Service" and describe how
    they are built and torn down through their ``LifespanTasks``.
    """

    class LifespanTasks(ABC):
        @staticmethod
        @abstractmethod
        async def ctor(*args, **kwargs) -> BaseService:
            raise NotImplementedError

        @staticmethod
        @abstractmethod
        async def dtor(instance: BaseService):
            raise NotImplementedError


type LifespanTasks = BaseService.LifespanTasks
