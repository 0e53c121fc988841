from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    llm_provider: str = Field(default="openai", validation_alias="LLM_PROVIDER")
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_api_base: Optional[str] = Field(
        default=None, validation_alias="OPENAI_API_BASE"
    )
    generator_model: str = Field(
        default="gpt-4.1-mini", validation_alias="GENERATOR_MODEL"
    )
    generator_temperature: float = Field(
        default=0.7, validation_alias="GENERATOR_TEMPERATURE"
    )
    classifier_model: str = Field(
        default="gpt-4.1-mini", validation_alias="CLASSIFIER_MODEL"
    )
    judge_provider: str = Field(default="openai", validation_alias="JUDGE_PROVIDER")
    judge_model: str = Field(default="gpt-4o-mini", validation_alias="JUDGE_MODEL")
    judge_api_key: Optional[str] = Field(default=None, validation_alias="JUDGE_API_KEY")
    judge_api_base: Optional[str] = Field(
        default=None, validation_alias="JUDGE_API_BASE"
    )
    judge_threshold: int = Field(default=85, validation_alias="JUDGE_THRESHOLD")
    judge_fallback_score: int = Field(
        default=75, validation_alias="JUDGE_FALLBACK_SCORE"
    )
    max_retries: int = Field(default=1, ge=0, validation_alias="MAX_RETRIES")
    classifier_timeout_seconds: float = Field(
        default=15.0, validation_alias="CLASSIFIER_TIMEOUT_SECONDS"
    )
    generator_timeout_seconds: float = Field(
        default=45.0, validation_alias="GENERATOR_TIMEOUT_SECONDS"
    )
    judge_timeout_seconds: float = Field(
        default=30.0, validation_alias="JUDGE_TIMEOUT_SECONDS"
    )
    pipeline_deadline_seconds: float = Field(
        default=120.0, validation_alias="PIPELINE_DEADLINE_SECONDS"
    )
    sensor_store: str = Field(default="sqlite", validation_alias="SENSOR_STORE")
    sensor_store_path: Optional[str] = Field(
        default=None, validation_alias="SENSOR_STORE_PATH"
    )
    sensor_history_ttl_days: int = Field(
        default=30, validation_alias="SENSOR_HISTORY_TTL_DAYS"
    )
    conversation_store: str = Field(
        default="sqlite", validation_alias="CONVERSATION_STORE"
    )
    conversation_store_path: Optional[str] = Field(
        default=None, validation_alias="CONVERSATION_STORE_PATH"
    )
    conversation_ttl_days: int = Field(
        default=30, validation_alias="CONVERSATION_TTL_DAYS"
    )
    conversation_window_days: int = Field(
        default=7, validation_alias="CONVERSATION_WINDOW_DAYS"
    )
    similar_query_limit: int = Field(default=3, validation_alias="SIMILAR_QUERY_LIMIT")
    profile_store: str = Field(default="sqlite", validation_alias="PROFILE_STORE")
    profile_store_path: Optional[str] = Field(
        default=None, validation_alias="PROFILE_STORE_PATH"
    )
    log_path: Optional[str] = Field(default=None, validation_alias="LOG_PATH")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("llm_provider", "judge_provider", mode="after")
    @classmethod
    def normalize_llm_provider(cls, value: str) -> str:
        return value.lower() if value else value

    @field_validator(
        "sensor_store",
        "conversation_store",
        "profile_store",
        mode="after",
    )
    @classmethod
    def normalize_store(cls, value: str) -> str:
        return value.lower() if value else value

    @field_validator("judge_threshold", "judge_fallback_score", mode="after")
    @classmethod
    def clamp_score(cls, value: int) -> int:
        return max(0, min(100, value))


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig()
