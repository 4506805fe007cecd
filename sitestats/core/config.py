from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """One tracked site. The credential is handed over ready to use."""

    host: str
    base_url: Optional[str] = None
    credential: Optional[str] = None

    @model_validator(mode="after")
    def _default_base_url(self):
        self.host = self.host.strip().lower()
        if not self.base_url:
            self.base_url = f"https://{self.host}/"
        return self


class Settings(BaseSettings):
    PROJECT_NAME: str = "sitestats"
    DATABASE_URL: str = "sqlite+aiosqlite:///./sitestats.db"
    SQL_ECHO: bool = False

    # Sources
    SOURCES: List[SourceConfig] = Field(default_factory=list)
    FETCH_PATH: str = "/wp-json/sitestats/v1/batch"
    HTTP_TIMEOUT_SECONDS: float = 30.0
    FETCH_MAX_ATTEMPTS: int = 3

    # Enrichment (ip-api.com allows 45 requests/minute)
    GEO_LOOKUP_URL: str = "http://ip-api.com/json/{ip}?fields=status,country,countryCode"
    ENRICH_INTERVAL_SECONDS: float = 2.0

    # Classification
    DEDUP_WINDOW_SECONDS: int = 3600
    LOCAL_TIMEZONE: str = "UTC"
    UPLOAD_PATHS: List[str] = ["/wp-content/uploads/", "/files/", "/media/"]
    MEDIA_EXTENSIONS: List[str] = [
        "pdf", "zip", "gz", "mp3", "mp4", "ogg", "m4a", "mov", "avi",
        "jpg", "jpeg", "png", "gif", "webp", "svg",
        "doc", "docx", "xls", "xlsx", "ppt", "pptx", "epub", "txt",
    ]

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

    @property
    def source_hosts(self) -> List[str]:
        return [s.host for s in self.SOURCES]


@lru_cache()
def get_settings():
    return Settings()
