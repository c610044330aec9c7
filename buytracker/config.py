"""Application configuration management."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment or `.env`."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./.tmp/buytracker.db",
        alias="DATABASE_URL",
    )

    bnb_rpc_url: Optional[str] = Field(
        default="https://bsc-dataseed.binance.org/",
        alias="BNB_RPC_URL",
    )
    ethereum_rpc_url: Optional[str] = Field(default=None, alias="ETHEREUM_RPC_URL")
    base_rpc_url: Optional[str] = Field(default=None, alias="BASE_RPC_URL")

    routers_json: Optional[Path] = Field(default=None, alias="ROUTERS_JSON")

    poll_interval_seconds: float = Field(
        default=5.0,
        alias="POLL_INTERVAL_SECONDS",
        gt=0,
        le=300,
    )
    max_block_range: int = Field(default=500, alias="MAX_BLOCK_RANGE", ge=1, le=5000)
    display_decimals: int = Field(default=4, alias="DISPLAY_DECIMALS", ge=0, le=18)
    max_custom_emojis: int = Field(default=3, alias="MAX_CUSTOM_EMOJIS", ge=1, le=10)
    setup_session_timeout_minutes: int = Field(
        default=15,
        alias="SETUP_SESSION_TIMEOUT_MINUTES",
        ge=1,
        le=1440,
    )
    default_image_path: Optional[Path] = Field(default=None, alias="DEFAULT_IMAGE_PATH")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    def rpc_urls(self) -> Dict[str, str]:
        """Return configured RPC endpoints keyed by network id."""
        candidates = {
            "bnb": self.bnb_rpc_url,
            "ethereum": self.ethereum_rpc_url,
            "base": self.base_rpc_url,
        }
        return {network: url for network, url in candidates.items() if url}


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached Settings instance, raising a helpful message on failure."""
    try:
        return Settings()
    except (
        ValidationError
    ) as exc:  # pragma: no cover - configuration failure visible on boot
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


__all__ = ["Settings", "load_settings"]
