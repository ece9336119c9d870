from .main import EventBusService

__all__ = ["EventBusService"]
