"""
Config cache and watch index tests.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from copywatch.core.copy_trading import ConfigCache, build_watch_index
from copywatch.db.stores import InMemoryConfigStore

from conftest import BENEFICIARY, ROUTER, STRANGER, WATCHED, make_config


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestBuildWatchIndex:
    def test_target_and_beneficiaries_share_config(self):
        config = make_config(beneficiary_addresses=[BENEFICIARY])
        index = build_watch_index([config])

        assert index[WATCHED] == [config]
        assert index[BENEFICIARY] == [config]

    def test_inactive_configs_skipped(self):
        assert build_watch_index([make_config(is_active=False)]) == {}

    def test_default_routers_fill_empty_allowlist(self):
        open_config = make_config()
        own_config = make_config(router_allowlist=[STRANGER])

        build_watch_index([open_config, own_config], default_routers=[ROUTER])

        assert open_config.router_allowlist == [ROUTER]
        assert own_config.router_allowlist == [STRANGER]


class TestConfigCache:
    """TTL refresh semantics."""

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, clock):
        cache = ConfigCache(InMemoryConfigStore([make_config()]), ttl_seconds=60, clock=clock)

        assert await cache.is_watched(WATCHED.upper().replace("0X", "0x"))
        assert not await cache.is_watched(STRANGER)
        assert not await cache.is_watched(None)

    @pytest.mark.asyncio
    async def test_new_config_visible_only_after_ttl(self, clock):
        store = InMemoryConfigStore()
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)
        assert await cache.configs_for(WATCHED) == []

        store.add(make_config())
        clock.now += 30
        assert await cache.configs_for(WATCHED) == []

        clock.now += 31
        assert len(await cache.configs_for(WATCHED)) == 1

    @pytest.mark.asyncio
    async def test_store_read_once_per_ttl(self, clock):
        store = InMemoryConfigStore([make_config()])
        store.list_active = AsyncMock(wraps=store.list_active)
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)

        for _ in range(5):
            await cache.configs_for(WATCHED)

        assert store.list_active.await_count == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, clock):
        store = InMemoryConfigStore()
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)
        await cache.refresh()

        store.add(make_config())
        cache.invalidate()

        assert await cache.is_watched(WATCHED)

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_index(self, clock):
        store = InMemoryConfigStore([make_config()])
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)
        await cache.refresh()

        store.list_active = AsyncMock(side_effect=RuntimeError("db down"))
        clock.now += 61

        assert await cache.is_watched(WATCHED)
        # Next attempt waits for another TTL
        assert store.list_active.await_count == 1
        await cache.is_watched(WATCHED)
        assert store.list_active.await_count == 1

    @pytest.mark.asyncio
    async def test_timed_out_refresh_keeps_previous_index(self, clock):
        store = InMemoryConfigStore([make_config()])
        cache = ConfigCache(store, ttl_seconds=60, timeout_s=0.01, clock=clock)
        await cache.refresh()

        async def hang():
            await asyncio.sleep(10)

        store.list_active = hang
        clock.now += 61

        assert await cache.is_watched(WATCHED)

    @pytest.mark.asyncio
    async def test_get_by_id(self, clock):
        config = make_config()
        cache = ConfigCache(InMemoryConfigStore([config]), clock=clock)

        cached = await cache.get(config.id)
        assert cached is not None
        assert cached.id == config.id
        assert await cache.get("copy_missing") is None


class TestSpendLedger:
    """Spend applied in this process survives reloads of older rows."""

    @pytest.mark.asyncio
    async def test_spend_reaches_object_cached_after_refresh(self, clock):
        config = make_config(delegation_amount=Decimal("1.0"))
        cache = ConfigCache(InMemoryConfigStore([config]), ttl_seconds=60, clock=clock)
        in_flight = await cache.get(config.id)

        clock.now += 61
        await cache.refresh()
        in_flight.record_spend(Decimal("0.6"), datetime.now(timezone.utc))
        cache.record_spend(in_flight)

        current = await cache.get(config.id)
        assert current is not in_flight
        assert current.total_spent == Decimal("0.6")
        assert current.total_executed_trades == 1

    @pytest.mark.asyncio
    async def test_stale_row_merged_on_reload(self, clock):
        config = make_config(delegation_amount=Decimal("1.0"))
        store = InMemoryConfigStore([config])
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)
        spent = await cache.get(config.id)
        spent.record_spend(Decimal("0.4"), datetime.now(timezone.utc))
        cache.record_spend(spent)

        # The store never saw the spend
        await cache.refresh(force=True)

        assert store.get(config.id).total_spent == Decimal("0")
        assert (await cache.get(config.id)).total_spent == Decimal("0.4")

    @pytest.mark.asyncio
    async def test_higher_store_value_wins(self, clock):
        config = make_config(delegation_amount=Decimal("1.0"))
        store = InMemoryConfigStore([config])
        cache = ConfigCache(store, ttl_seconds=60, clock=clock)
        spent = await cache.get(config.id)
        spent.record_spend(Decimal("0.2"), datetime.now(timezone.utc))
        cache.record_spend(spent)

        store.get(config.id).total_spent = Decimal("0.7")
        await cache.refresh(force=True)

        assert (await cache.get(config.id)).total_spent == Decimal("0.7")
