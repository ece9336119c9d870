from __future__ import annotations

from ephemera.core.events import LocalEventBus
from ephemera.services import BaseService


# Host signal delivery for the application process.
class EventBusService(BaseService, LocalEventBus):
    class LifespanTasks(BaseService.LifespanTasks):
        @staticmethod
        async def ctor() -> EventBusService:
            bus = EventBusService()
            await bus.start()
            return bus

        @staticmethod
        async def dtor(instance: EventBusService) -> None:
            await instance.shutdown()
