# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


DEV_ENVS = {"", "dev", "development", "local", "test"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="postgresql://localhost:5432/waya")
    DB_POOL_WAIT_TIMEOUT_S: float = 30.0

    # -----------------------
    # Inbound auth (x-api-key)
    # -----------------------
    WAYA_API_KEY: str = ""

    # -----------------------
    # Client notification (BetaWorkOS)
    # -----------------------
    BETAWORKOS_WEBHOOK_URL: str = ""
    WAYA_WEBHOOK_SECRET: str = ""  # signs outbound notifications when set
    NOTIFY_HTTP_TIMEOUT_S: float = 5.0
    NOTIFY_MAX_IN_FLIGHT: int = Field(default=4, ge=1)

    # -----------------------
    # Afriex gateway (Mode Switch)
    # -----------------------
    GATEWAY_MODE: Literal["sandbox", "real"] = "sandbox"
    AFRIEX_API_KEY: str = ""
    AFRIEX_BASE_URL: str = "https://staging.afx-server.com"
    AFRIEX_HTTP_TIMEOUT_S: float = 30.0

    # -----------------------
    # Orchestration
    # -----------------------
    SOURCE_CURRENCY: str = "USD"
    PAYOUT_CONCURRENCY: int = Field(default=10, ge=1)
    BATCH_RUNNER_WORKERS: int = Field(default=2, ge=1)
    SHUTDOWN_DRAIN_TIMEOUT_S: float = 10.0
    LIST_PAYOUTS_DEFAULT_LIMIT: int = 100


settings = Settings()


def is_dev_env(env: str | None = None) -> bool:
    return (env if env is not None else settings.ENV or "").strip().lower() in DEV_ENVS


def validate_env_settings() -> None:
    """
    Fail fast outside development when secrets the service cannot run
    without are missing.
    """
    if is_dev_env():
        return

    missing: list[str] = []
    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if not (settings.WAYA_API_KEY or "").strip():
        missing.append("WAYA_API_KEY")
    if settings.GATEWAY_MODE == "real" and not (settings.AFRIEX_API_KEY or "").strip():
        missing.append("AFRIEX_API_KEY")

    if missing:
        raise RuntimeError("Missing required settings: " + ", ".join(missing))
