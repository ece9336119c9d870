from .main import lifespan

__all__ = ["lifespan"]
