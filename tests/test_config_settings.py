from decimal import Decimal

from copywatch.config import Settings


def test_rpc_url_falls_back_to_provider_url(monkeypatch):
    """Legacy PROVIDER_URL is used when RPC_URL is unset."""

    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.setenv("PROVIDER_URL", "https://legacy.example")

    settings = Settings()

    assert settings.rpc_url == "https://legacy.example"


def test_rpc_url_direct_env(monkeypatch):
    """RPC_URL remains the primary source."""

    monkeypatch.setenv("RPC_URL", "https://primary.example")
    monkeypatch.setenv("PROVIDER_URL", "https://legacy.example")

    settings = Settings()

    assert settings.rpc_url == "https://primary.example"


def test_router_allowlist_parsing(monkeypatch):
    """Malformed router entries are dropped, the rest lowercased."""

    router = "0x" + "AB" * 20
    monkeypatch.setenv("COPY_TRADING_ROUTERS", f"{router}, not-an-address ,0x1234")

    settings = Settings()

    assert settings.router_allowlist == [router.lower()]


def test_telegram_bot_token_alias(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")

    settings = Settings()

    assert settings.telegram_bot_token == "123:abc"
    assert settings.has_telegram is True


def test_defaults(monkeypatch):
    for name in ("BLOCK_FEED_MODE", "POLL_INTERVAL_SECONDS", "CONFIG_CACHE_TTL_SECONDS", "CHAIN_ID"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.chain_id == 8453
    assert settings.block_feed_mode == "auto"
    assert settings.poll_interval_seconds == 7.0
    assert settings.config_cache_ttl_seconds == 60.0
    assert settings.default_max_slippage == Decimal("0.05")
