from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 4
    database_auto_migrate: bool = True
    queries_path: str = "config/queries.json"
    moderation_config_path: str = "config/ng_words.json"
    allow_list_path: str | None = None
    allow_list_enabled: bool = False
    extractor_base_url: str = "http://localhost:8700"
    extractor_timeout_seconds: float = 45.0
    query_delay_seconds: float = 3.0
    retention_days: int = 30
    max_stored_records: int = 2000
    otel_enabled: bool = True
    otel_service_name: str = "sighting-ingestor"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="SI_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
