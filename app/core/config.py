from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./column_mapper.db"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Single global slot holding the last mapping configuration
    CONFIG_CACHE_KEY: str = "excelMapperConfig"

    EXPORT_MIN_LATENCY_MS: int = 500
    EXPORT_BASE_FILENAME: str = "mapped_data"
    EXPORT_SHEET_NAME: str = "Mapped Data"

    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024

    @property
    def is_sqlite(self):
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def export_min_latency_seconds(self):
        return self.EXPORT_MIN_LATENCY_MS / 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
