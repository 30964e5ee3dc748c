import os

from decimal import Decimal
from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the legacy PROVIDER_URL variable when RPC_URL is unset."""

        super().model_post_init(__context)

        if not self.rpc_url:
            fallback = os.getenv("PROVIDER_URL")
            if fallback:
                object.__setattr__(self, "rpc_url", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Chain access
    chain_id: int = Field(default=8453, description="EVM chain ID being watched (Base mainnet)")
    rpc_url: str = Field(default="", description="JSON-RPC HTTP endpoint")
    rpc_ws_url: str = Field(default="", description="JSON-RPC websocket endpoint for newHeads")
    rpc_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for chain reads")

    # Block feed
    block_feed_mode: str = Field(
        default="auto",
        description="Block delivery mode: auto (push with poll fallback), push or poll",
    )
    poll_interval_seconds: float = Field(default=7.0, gt=0, description="Chain height poll interval")

    # Copy trading
    copy_trading_enabled: bool = Field(
        default=True,
        description="Start the block watcher alongside FastAPI",
    )
    config_cache_ttl_seconds: float = Field(
        default=60.0,
        gt=0,
        description="TTL for the active mirror config cache",
    )
    copy_trading_buy_only: bool = Field(
        default=True,
        description="Default buy_only flag for configs that do not set one",
    )
    copy_trading_routers: str = Field(
        default="",
        description="Comma-separated router allowlist applied when a config has none",
        validation_alias=AliasChoices("copy_trading_routers", "COPY_TRADING_ROUTERS"),
    )
    native_token_address: str = Field(
        default=NATIVE_TOKEN_ADDRESS,
        description="Sentinel address used by the swap provider for the native asset",
    )
    default_max_slippage: Decimal = Field(
        default=Decimal("0.05"),
        description="Slippage fraction used when a config does not specify one",
    )

    # Swap provider
    swap_api_base_url: str = Field(default="", description="Base URL of the swap/signing service")
    swap_api_key: str = Field(default="", description="API key for the swap/signing service")
    swap_timeout_seconds: float = Field(default=30.0, gt=0, description="Swap request timeout")

    # Notifications
    telegram_bot_token: str = Field(
        default="",
        description="Telegram bot token",
        validation_alias=AliasChoices("telegram_bot_token", "BOT_TOKEN"),
    )
    telegram_chat_id: str = Field(default="", description="Telegram chat receiving mirror outcomes")

    # Persistence
    convex_url: str = Field(default="", description="Convex deployment URL")
    convex_deploy_key: str = Field(default="", description="Convex deploy key")

    @property
    def has_ws_url(self) -> bool:
        return bool(self.rpc_ws_url)

    @property
    def has_telegram(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def has_convex(self) -> bool:
        return bool(self.convex_url)

    @property
    def router_allowlist(self) -> List[str]:
        """Global router allowlist, lowercased, ignoring malformed entries."""
        return [
            entry.strip().lower()
            for entry in self.copy_trading_routers.split(",")
            if entry.strip().startswith("0x") and len(entry.strip()) == 42
        ]


# Global settings instance
settings = Settings()
