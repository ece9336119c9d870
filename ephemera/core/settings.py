from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
        env_nested_delimiter="__"
    )

    app_name: str = "ephemera"
    app_version: str = "1.0.0"

    LOG_DIR: str = "./log"
    DEBUG_MODE: bool = True

    TMP_DIR: str = "./tmp"
    DECRYPTED_DIR_NAME: str = "decrypted"
    FILE_DELETE_THRESHOLD_SECONDS: int = Field(default=3 * 60, ge=1)
    TMP_WORKER_THREADS: int = Field(default=2, ge=1)

    DECODE_PIPE_CAPACITY_BYTES: int = Field(default=64 * 1024, ge=1)
    DECODE_CHUNK_BYTES: int = Field(default=8 * 1024, ge=1)

    REFERENCE_AUTHORITY: str = "ephemera.decryptedfileprovider"

    MEMORY_PRESSURE_CRITICAL_LEVEL: str = "critical"
    IDLE_SIGNAL_INTERVAL_SECONDS: int = Field(default=0, ge=0)


settings = Settings()
