from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(val: Optional[str]) -> list[str]:
    return [v.strip() for v in (val or "").split(",") if v.strip()]


class Settings(BaseSettings):
    APP_NAME: str = "ReWear Exchange API"
    VERSION: str = "1.0.0"

    # Points economy
    SIGNUP_BONUS_POINTS: int = 100
    DEFAULT_ITEM_POINTS: int = 25

    # Natural-language search
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"

    LOG_LEVEL: str = "INFO"

    # CORS, override via ALLOWED_ORIGINS (CSV)
    ALLOWED_ORIGINS: str = Field(default="*")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def allow_origins(self) -> list[str]:
        return _split_csv(self.ALLOWED_ORIGINS) or ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
