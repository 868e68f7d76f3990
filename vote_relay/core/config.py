from functools import lru_cache

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "notion-vote-relay"
    environment: str = "dev"
    notion_api_key: str | None = None
    notion_database_id: str | None = None
    key_database_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("key_db", "notion_key_database_id", "key_database_id"),
    )
    notion_base_url: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"
    notion_timeout_seconds: float = 30.0
    notion_max_retries: int = 3
    vote_update_concurrency: int = 2
    vote_job_concurrency: int = 1
    vote_results_dir: str = "server/vote-results"
    schema_cache_ttl_seconds: float = 300.0
    notion_vote_property: str | None = None
    key_db_key_property: str | None = Field(
        default=None,
        validation_alias=AliasChoices("key_db_key_property", "key_db_password_property"),
    )
    key_db_used_property: str | None = None
    key_db_result_property: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    cors_origins: list[str] = ["http://localhost:5173"]
    otel_enabled: bool = True
    otel_service_name: str = "notion-vote-relay"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("vote_update_concurrency", "vote_job_concurrency", mode="before")
    @classmethod
    def _clamp_concurrency(cls, value: object, info: ValidationInfo) -> int:
        default = _CONCURRENCY_DEFAULTS[info.field_name]
        try:
            parsed = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return default
        return max(1, parsed or default)


_CONCURRENCY_DEFAULTS = {
    "vote_update_concurrency": 2,
    "vote_job_concurrency": 1,
}


@lru_cache
def get_settings() -> Settings:
    return Settings()
