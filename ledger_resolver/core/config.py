from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ledger-resolver"
    environment: str = "dev"
    rpc_url: str = "https://fullnode.testnet.sui.io:443"
    rpc_timeout_seconds: float = 10.0
    registry_id: str | None = None
    package_id: str | None = None
    record_module: str = "devhub"
    record_type_name: str = "Project"
    creation_event_name: str = "ProjectCreated"
    table_field_name: str = "projects"
    table_page_size: int = Field(default=200, ge=1, le=1000)
    event_window: int = Field(default=100, ge=1, le=1000)
    fetch_concurrency: int = Field(default=8, ge=1, le=64)
    owned_objects_page_size: int = Field(default=50, ge=1, le=50)
    owned_objects_max_pages: int = Field(default=10, ge=1)
    resolve_timeout_seconds: float | None = 30.0
    correlate_direct_keys: bool = True
    otel_enabled: bool = True
    otel_service_name: str = "ledger-resolver"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LEDGER_RESOLVER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
