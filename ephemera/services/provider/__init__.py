from .main import DecryptedFileProviderService

__all__ = ["DecryptedFileProviderService"]
