from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "aija-job-cleanup"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    cron_secret: str | None = None
    cleanup_batch_size: int = Field(default=25, ge=1)
    cleanup_min_check_interval_hours: int = Field(default=48, ge=1)
    cleanup_lock_key: int = 48_214_733
    url_check_timeout_seconds: float = 15.0
    url_check_user_agent: str = "AI Jobs Australia Bot/1.0 (Job Validation)"
    url_check_html_scan: bool = True
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    api_base_url: str = "http://localhost:8000"
    serve_host: str = "0.0.0.0"
    serve_port: int = 8000
    trigger_interval_seconds: float = 3600.0
    trigger_timeout_seconds: float = 900.0
    max_backoff_seconds: float = 300.0
    otel_enabled: bool = True
    otel_service_name: str = "aija-job-cleanup"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="AIJA_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
