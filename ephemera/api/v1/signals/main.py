from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, field_validator

from ephemera.core.dependencies import Inject
from ephemera.core.events import EventKind, MemoryPressureLevel
from ephemera.services.event_bus import EventBusService

router = APIRouter(prefix="/signals")


class MemoryPressureSignal(BaseModel):
    level: MemoryPressureLevel

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, value):
        return MemoryPressureLevel.parse(value)


@router.post("/idle", status_code=202)
async def device_idle(events: EventBusService = Inject(EventBusService)):
    events.publish(EventKind.DEVICE_IDLE)
    return {"accepted": EventKind.DEVICE_IDLE.value}


@router.post("/memory-pressure", status_code=202)
async def memory_pressure(
        signal: MemoryPressureSignal,
        events: EventBusService = Inject(EventBusService),
):
    events.publish(EventKind.MEMORY_PRESSURE, signal.level)
    return {"accepted": EventKind.MEMORY_PRESSURE.value, "level": signal.level.name.lower()}
