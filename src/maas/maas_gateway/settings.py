"""Runtime settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from ``MAAS_*`` environment variables."""

    app_name: str = "maas-gateway"
    log_level: str = "INFO"
    default_api_endpoint: str = "https://genaiapi.cloudsway.net"
    search_base_url: str = "https://searchapi.cloudsway.net"
    poll_interval: float = Field(default=5.0, ge=0.0)
    mj_max_poll_attempts: int = Field(default=60, ge=1)
    video_max_poll_attempts: int = Field(default=120, ge=1)
    request_timeout: float = Field(default=60.0, ge=0.5)
    detection_timeout: float = Field(default=10.0, ge=0.5)
    config_cache_ttl: float = Field(default=600.0, ge=0.0)
    client_config_cache_ttl: float = Field(default=1800.0, ge=0.0)
    # Probe the ordered list of candidate task-id fields on HL create responses.
    task_id_fallback: bool = True
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="MAAS_",
        extra="ignore",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
