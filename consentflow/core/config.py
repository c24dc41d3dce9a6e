from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Consent Contract Service"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours

    # ─────────── LIFECYCLE ───────────
    invitation_ttl_days: int = 7
    max_approved_amendments: int = 2
    # acts an amendment may add or remove; empty allows any name
    amendable_acts: List[str] = ["touching", "kissing", "oral", "anal", "vaginal"]

    # ─────────── NOTIFICATIONS ───────────
    # "database" writes in-app rows, "log" only logs the event
    notification_channel: Literal["database", "log"] = "database"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
