"""
Active config cache and watch index.

Configs are reloaded at most once per TTL. Between refreshes a newly
activated config is invisible to the watcher; that staleness is accepted in
exchange for one store read per TTL instead of one per block.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from .models import MirrorConfig

if TYPE_CHECKING:
    from ...db.stores import ConfigStore

logger = logging.getLogger(__name__)

WatchIndex = Dict[str, List[MirrorConfig]]
SpendEntry = Tuple[Decimal, int, Optional[datetime]]


def build_watch_index(
    configs: List[MirrorConfig],
    default_routers: Optional[List[str]] = None,
) -> WatchIndex:
    """Map every target and beneficiary address to the configs watching it."""
    index: WatchIndex = {}
    for config in configs:
        if not config.is_active:
            continue
        if not config.router_allowlist and default_routers:
            config.router_allowlist = list(default_routers)
        for address in config.watched_addresses:
            index.setdefault(address, []).append(config)
    return index


class ConfigCache:
    """TTL cache over ``ConfigStore.list_active`` owned by one engine."""

    def __init__(
        self,
        store: ConfigStore,
        ttl_seconds: float = 60.0,
        *,
        timeout_s: float = 10.0,
        default_routers: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.timeout_s = timeout_s
        self.default_routers = default_routers or []
        self._clock = clock
        self._index: WatchIndex = {}
        self._configs: Dict[str, MirrorConfig] = {}
        # Spend applied by this process, keyed by config id. Reloaded rows may
        # predate it, so it is merged into every refresh.
        self._spend: Dict[str, SpendEntry] = {}
        self._expires_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_stale(self) -> bool:
        return self._expires_at is None or self._clock() >= self._expires_at

    @property
    def watched_addresses(self) -> List[str]:
        return list(self._index.keys())

    def invalidate(self) -> None:
        self._expires_at = None

    async def refresh(self, force: bool = False) -> WatchIndex:
        """
        Reload configs when the TTL has lapsed.

        A failed or timed-out load keeps serving the previous index; the next
        attempt happens after another TTL rather than on every lookup.
        """
        async with self._lock:
            if not force and not self.is_stale:
                return self._index

            try:
                configs = await asyncio.wait_for(self.store.list_active(), timeout=self.timeout_s)
            except asyncio.TimeoutError:
                logger.warning(f"Config refresh timed out after {self.timeout_s}s, keeping previous index")
            except Exception as e:
                logger.error(f"Config refresh failed, keeping previous index: {e}")
            else:
                for config in configs:
                    self._merge_spend(config)
                self._index = build_watch_index(configs, self.default_routers)
                self._configs = {c.id: c for c in configs if c.is_active}
                logger.debug(
                    f"Loaded {len(self._configs)} active mirror configs watching "
                    f"{len(self._index)} addresses"
                )

            self._expires_at = self._clock() + self.ttl_seconds
            return self._index

    async def configs_for(self, address: Optional[str]) -> List[MirrorConfig]:
        if not address:
            return []
        index = await self.refresh()
        return list(index.get(address.lower(), []))

    async def is_watched(self, address: Optional[str]) -> bool:
        return bool(await self.configs_for(address))

    async def get(self, config_id: str) -> Optional[MirrorConfig]:
        """Cached config by id, None when it is no longer active."""
        await self.refresh()
        return self._configs.get(config_id)

    def record_spend(self, config: MirrorConfig) -> None:
        """
        Carry a config's post-trade spend into the ledger and onto whichever
        object is cached for it now.

        The executor updates the config it was handed; a refresh that ran while
        the swap was in flight has since replaced that object with a store row
        read before the spend was persisted.
        """
        entry: SpendEntry = (config.total_spent, config.total_executed_trades, config.last_executed_at)
        previous = self._spend.get(config.id)
        if previous is not None:
            entry = (
                max(previous[0], entry[0]),
                max(previous[1], entry[1]),
                _latest(previous[2], entry[2]),
            )
        self._spend[config.id] = entry

        cached = self._configs.get(config.id)
        if cached is not None:
            self._merge_spend(cached)

    def _merge_spend(self, config: MirrorConfig) -> None:
        entry = self._spend.get(config.id)
        if entry is None:
            return
        spent, trades, last_executed_at = entry
        config.total_spent = max(config.total_spent, spent)
        config.total_executed_trades = max(config.total_executed_trades, trades)
        config.last_executed_at = _latest(config.last_executed_at, last_executed_at)


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)
