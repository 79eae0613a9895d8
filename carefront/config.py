# carefront/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./carefront.db", validation_alias="DATABASE_URL")

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    llm_model: str = Field("gpt-4o-mini", validation_alias="LLM_MODEL")
    extraction_model: str | None = Field(None, validation_alias="EXTRACTION_MODEL")
    llm_timeout_seconds: float = Field(30.0, validation_alias="LLM_TIMEOUT_SECONDS")
    conversation_temperature: float = Field(0.5, validation_alias="CONVERSATION_TEMPERATURE")
    extraction_temperature: float = Field(0.1, validation_alias="EXTRACTION_TEMPERATURE")

    admin_api_token: str | None = Field(None, validation_alias="ADMIN_API_TOKEN")

    audit_backend: str = Field("log", validation_alias="AUDIT_BACKEND")
    audit_retention: int = Field(1000, validation_alias="AUDIT_RETENTION")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
