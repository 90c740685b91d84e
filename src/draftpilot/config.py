from __future__ import annotations

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Draftpilot"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8790
    log_level: str = "INFO"

    api_base_url: str = "http://localhost:5001/api"
    api_token: str = ""
    http_timeout_sec: int = 60

    autosave_delay_ms: int = 2000
    autosave_grace_ms: int = 1000

    scan_poll_interval_ms: int = 3000
    scan_poll_timeout_ms: int = 120_000
    analysis_poll_interval_ms: int = 2000
    analysis_poll_timeout_ms: int = 120_000

    progress_tick_ms: int = 500
    progress_cap: int = 95
    progress_min_step: float = 0.5

    # 0 disables the client-side bound
    generation_timeout_sec: float = 300.0

    default_language: str = "en"
    cors_origins: str = "http://127.0.0.1:5173"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("default_language")
    @classmethod
    def validate_language(cls, value: str) -> str:
        if value not in {"en", "de"}:
            raise ValueError("default_language must be 'en' or 'de'")
        return value

    @field_validator("progress_cap")
    @classmethod
    def validate_progress_cap(cls, value: int) -> int:
        if value <= 0 or value >= 100:
            raise ValueError("progress_cap must be between 1 and 99")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
