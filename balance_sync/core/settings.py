"""Configuration and environment settings for the balance sync engine."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the balance sync engine."""

    database_url: str = "sqlite:///balance_sync.db"
    ledger_timezone: str = "America/Sao_Paulo"
    transaction_page_size: int = 500
    sweep_page_size: int = 100
    reconcile_strategy: Literal["recompute", "delta"] = "recompute"
    settle_on_recompute: bool = True
    debounce_seconds: float = 0.0
    invocation_timeout_seconds: float = 30.0
    sweep_workers: int = 4
    sweep_only_unsynced: bool = False
    scheduler_enabled: bool = True
    sweep_cron_hour: int = 20
    sweep_cron_minute: int = 0
    log_file: str = "logs/balance_sync.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
