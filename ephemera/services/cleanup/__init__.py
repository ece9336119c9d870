from .main import CleanupConfig, CleanupScheduler, RegistrationState

__all__ = ["CleanupConfig", "CleanupScheduler", "RegistrationState"]
