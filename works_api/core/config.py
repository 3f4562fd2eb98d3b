from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Works Agreements API"
    app_env: str = "local"
    database_url: str = "sqlite+pysqlite:///./works_agreements.db"
    database_auto_create: bool = True
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_exporter: bool = False
    simpro_base_url: str | None = None
    simpro_access_token: str | None = None
    simpro_webhook_secret: str | None = None
    simpro_timeout_seconds: float = 15.0
    # Dollars inc. GST, the same unit SimPRO reports in Total.IncTax.
    works_agreement_threshold: Decimal = Decimal("20000")
    default_colour_scheme: str = "To be advised"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
