from .base import BaseService, LifespanTasks

__all__ = ["BaseService", "LifespanTasks"]
