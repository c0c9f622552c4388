"""
Configuration settings for the escrow marketplace mirror.

Uses Pydantic Settings to load environment variables for the PostgreSQL store,
the ledger JSON-RPC endpoint, the ingestion loop cadence and reporting defaults.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("escrow_mirror", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(4, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Ledger
    rpc_url: str = Field("https://sepolia.base.org", alias="RPC_URL")
    escrow_address: Optional[str] = Field(None, alias="ESCROW_ADDRESS")
    start_block: Optional[int] = Field(None, alias="START_BLOCK")
    confirmations: int = Field(0, ge=0, alias="CONFIRMATIONS")
    max_block_range: int = Field(2_000, gt=0, alias="MAX_BLOCK_RANGE")
    rpc_timeout_seconds: float = Field(10.0, gt=0, alias="RPC_TIMEOUT_SECONDS")

    # Ingestion loop
    poll_interval_seconds: float = Field(4.0, ge=0, alias="POLL_INTERVAL_SECONDS")
    retry_max_backoff_seconds: float = Field(60.0, ge=0, alias="RETRY_MAX_BACKOFF_SECONDS")
    retry_jitter_seconds: float = Field(1.0, ge=0, alias="RETRY_JITTER_SECONDS")
    max_staleness_seconds: float = Field(300.0, gt=0, alias="MAX_STALENESS_SECONDS")

    # Reporting
    network_name: str = Field("baseSepolia", alias="NETWORK_NAME")
    chain_id: int = Field(84532, alias="CHAIN_ID")
    explorer_url: str = Field("https://sepolia.basescan.org", alias="EXPLORER_URL")
    token_decimals: int = Field(6, ge=0, alias="TOKEN_DECIMALS")
    export_path: str = Field("stats.json", alias="EXPORT_PATH")
    monitor_interval_seconds: float = Field(1800.0, gt=0, alias="MONITOR_INTERVAL_SECONDS")
    top_providers_limit: int = Field(25, gt=0, alias="TOP_PROVIDERS_LIMIT")
    recent_jobs_limit: int = Field(50, gt=0, alias="RECENT_JOBS_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def checkpoint_stream(self) -> str:
        """Checkpoint key: one stream per escrow contract."""
        return (self.escrow_address or "escrow").lower()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
