from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="Security Telemetry Hub")
    env: str = Field(default="dev")
    log_level: str = Field(default="INFO")

    telemetry_db_path: str = Field(default="data/telemetry.db")
    cache_backend: str = Field(default="sqlite", description="sqlite or memory")
    cache_db_path: str = Field(default="data/cache.db")
    dashboard_cache_ttl_seconds: int = Field(default=300, ge=0)

    sources_json: str = Field(
        default="",
        description='JSON list of source definitions, e.g. [{"name": "edr", "type": "http", ...}]',
    )
    source_timeout_seconds: float = Field(default=60.0, gt=0)
    upsert_chunk_size: int = Field(default=100, ge=1, le=5000)
    sync_lookback_days: int = Field(default=7, ge=1, le=365)
    retention_days: int = Field(default=90, ge=1)

    sync_scheduler_enabled: bool = Field(default=False)
    sync_interval_minutes: int = Field(default=15, ge=1)
    monthly_report_enabled: bool = Field(default=True)
    report_output_dir: str = Field(default="reports")

    auth_enabled: bool = Field(default=False)
    auth_header_name: str = Field(default="X-API-Key")
    auth_api_keys: str = Field(
        default="",
        description="Comma-separated key:role pairs, e.g. key1:operator,key2:admin",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _strip_string_values(cls, data):
        if not isinstance(data, dict):
            return data
        normalized: dict[str, object] = {}
        for key, value in data.items():
            if isinstance(value, str):
                normalized[key] = value.strip()
            else:
                normalized[key] = value
        return normalized

    @property
    def source_definitions(self) -> list[dict[str, Any]]:
        if not self.sources_json:
            return []
        parsed = json.loads(self.sources_json)
        if not isinstance(parsed, list):
            raise ValueError("SOURCES_JSON must be a JSON list of source definitions")
        return [dict(item) for item in parsed]


@lru_cache
def get_settings() -> Settings:
    return Settings()
