from functools import lru_cache
from pathlib import Path
from secrets import token_urlsafe
from typing import List

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILES = [REPO_ROOT / ".env"]

for env_path in ENV_FILES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    api_v1_prefix: str = Field(default="/v1", alias="API_V1_PREFIX")
    project_name: str = Field(default="KnitCount Counter Engine", alias="PROJECT_NAME")
    cors_origins_raw: str = Field(default="", alias="CORS_ORIGINS")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./knitcount.db",
        alias="DATABASE_URL",
        description="SQLAlchemy async connection string for the counter database",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    secret_key: str = Field(default_factory=lambda: token_urlsafe(32), alias="SECRET_KEY")
    access_token_expire_minutes: int = Field(default=60, ge=1, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    cascade_max_depth: int = Field(
        default=32,
        ge=1,
        alias="CASCADE_MAX_DEPTH",
        description="Deepest link hop followed from a single root update",
    )
    history_page_size: int = Field(default=50, ge=1, le=500, alias="HISTORY_PAGE_SIZE")
    sync_queue_maxsize: int = Field(
        default=256,
        ge=1,
        alias="SYNC_QUEUE_MAXSIZE",
        description="Pending events buffered per subscriber before new events are dropped",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    enable_prometheus_metrics: bool = Field(
        default=True,
        alias="ENABLE_PROMETHEUS_METRICS",
        description="Expose Prometheus metrics endpoint when true",
    )
    prometheus_metrics_path: str = Field(default="/metrics", alias="PROMETHEUS_METRICS_PATH")
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None,
        alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP HTTP endpoint for exporting traces",
    )
    otel_exporter_otlp_headers: str | None = Field(
        default=None,
        alias="OTEL_EXPORTER_OTLP_HEADERS",
        description="Comma separated key=value pairs added to OTLP requests",
    )
    otel_service_name: str | None = Field(default=None, alias="OTEL_SERVICE_NAME")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins_raw.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
