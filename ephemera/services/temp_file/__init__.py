from ._types import StoredFile
from .main import TempFileConfig, TempFileService

__all__ = ["StoredFile", "TempFileConfig", "TempFileService"]
