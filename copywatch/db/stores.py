"""
Config and event stores.

The engine only needs a narrow slice of persistence: list active configs,
apply a spend increment, look an event up by its idempotency key and insert
new events. In-memory implementations back tests and local runs; the Convex
implementations back production.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..core.copy_trading.errors import DuplicateEventError
from ..core.copy_trading.models import (
    DetectionSource,
    MirrorConfig,
    MirrorEvent,
    MirrorEventStatus,
)
from ..config import settings
from .convex_client import ConvexClient


class ConfigStore(ABC):
    """Source of mirror configurations."""

    @abstractmethod
    async def list_active(self) -> List[MirrorConfig]:
        pass

    @abstractmethod
    async def update_spend(
        self,
        config_id: str,
        total_spent: Decimal,
        total_executed_trades: int,
        last_executed_at: Optional[datetime],
    ) -> None:
        pass


class EventStore(ABC):
    """Append-only mirror event log."""

    @abstractmethod
    async def find_by_key(
        self,
        watched_address: str,
        tx_hash: str,
        config_id: str,
    ) -> Optional[MirrorEvent]:
        pass

    @abstractmethod
    async def insert(self, event: MirrorEvent) -> None:
        pass

    @abstractmethod
    async def list_for_account(self, account_name: str, limit: int = 50) -> List[MirrorEvent]:
        pass


# =============================================================================
# In-memory
# =============================================================================


class InMemoryConfigStore(ConfigStore):
    def __init__(self, configs: Optional[List[MirrorConfig]] = None):
        self._configs: Dict[str, MirrorConfig] = {c.id: c for c in configs or []}
        self._lock = asyncio.Lock()

    def add(self, config: MirrorConfig) -> None:
        self._configs[config.id] = config

    def get(self, config_id: str) -> Optional[MirrorConfig]:
        return self._configs.get(config_id)

    async def list_active(self) -> List[MirrorConfig]:
        # Copies, so cached configs never alias the stored rows
        return [c.model_copy(deep=True) for c in self._configs.values() if c.is_active]

    async def update_spend(
        self,
        config_id: str,
        total_spent: Decimal,
        total_executed_trades: int,
        last_executed_at: Optional[datetime],
    ) -> None:
        async with self._lock:
            config = self._configs.get(config_id)
            if config is None:
                return
            config.total_spent = min(config.delegation_amount, max(config.total_spent, total_spent))
            config.total_executed_trades = total_executed_trades
            config.last_executed_at = last_executed_at


class InMemoryEventStore(EventStore):
    def __init__(self):
        self._events: Dict[Tuple[str, str, str], MirrorEvent] = {}
        self._lock = asyncio.Lock()

    @property
    def events(self) -> List[MirrorEvent]:
        return list(self._events.values())

    async def find_by_key(
        self,
        watched_address: str,
        tx_hash: str,
        config_id: str,
    ) -> Optional[MirrorEvent]:
        return self._events.get((config_id, watched_address.lower(), tx_hash.lower()))

    async def insert(self, event: MirrorEvent) -> None:
        async with self._lock:
            if event.idempotency_key in self._events:
                raise DuplicateEventError(f"Event already recorded for {event.idempotency_key}")
            self._events[event.idempotency_key] = event

    async def list_for_account(self, account_name: str, limit: int = 50) -> List[MirrorEvent]:
        matching = [e for e in self._events.values() if e.account_name == account_name]
        matching.sort(key=lambda e: e.timestamp, reverse=True)
        return matching[:limit]


# =============================================================================
# Convex
# =============================================================================


def _to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _from_millis(value: Optional[Any]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def config_from_document(doc: Dict[str, Any]) -> MirrorConfig:
    created_at = _from_millis(doc.get("createdAt") or doc.get("_creationTime"))
    data: Dict[str, Any] = {
        "id": doc.get("_id") or doc["id"],
        "account_name": doc["accountName"],
        "target_wallet_address": doc["targetWalletAddress"],
        "beneficiary_addresses": doc.get("beneficiaryAddresses") or [],
        "delegation_amount": Decimal(str(doc["delegationAmount"])),
        "max_slippage": Decimal(str(doc.get("maxSlippage", settings.default_max_slippage))),
        "buy_only": doc.get("buyOnly", settings.copy_trading_buy_only),
        "router_allowlist": doc.get("routerAllowlist") or [],
        "is_active": doc.get("isActive", True),
        "total_executed_trades": int(doc.get("totalExecutedTrades", 0)),
        "total_spent": Decimal(str(doc.get("totalSpent", "0"))),
        "last_executed_at": _from_millis(doc.get("lastExecutedAt")),
    }
    if created_at is not None:
        data["created_at"] = created_at
    return MirrorConfig(**data)


def event_to_document(event: MirrorEvent) -> Dict[str, Any]:
    return {
        "eventId": event.id,
        "configId": event.config_id,
        "accountName": event.account_name,
        "targetWalletAddress": event.target_wallet_address,
        "watchedAddress": event.watched_address,
        "originalTxHash": event.original_tx_hash,
        "tokenAddress": event.token_address,
        "tokenSymbol": event.token_symbol,
        "tokenName": event.token_name,
        "originalAmount": str(event.original_amount),
        "copiedAmount": str(event.copied_amount),
        "executionTxHash": event.execution_tx_hash,
        "status": event.status.value,
        "source": event.source.value,
        "timestamp": _to_millis(event.timestamp),
        "errorMessage": event.error_message,
    }


def event_from_document(doc: Dict[str, Any]) -> MirrorEvent:
    return MirrorEvent(
        id=doc.get("eventId") or doc.get("_id"),
        config_id=doc["configId"],
        account_name=doc["accountName"],
        target_wallet_address=doc["targetWalletAddress"],
        watched_address=doc.get("watchedAddress") or doc["targetWalletAddress"],
        original_tx_hash=doc["originalTxHash"],
        token_address=doc["tokenAddress"],
        token_symbol=doc.get("tokenSymbol") or "UNKNOWN",
        token_name=doc.get("tokenName") or "Unknown Token",
        original_amount=Decimal(str(doc.get("originalAmount", "0"))),
        copied_amount=Decimal(str(doc.get("copiedAmount", "0"))),
        execution_tx_hash=doc.get("executionTxHash"),
        status=MirrorEventStatus(doc["status"]),
        source=DetectionSource(doc.get("source", DetectionSource.CALLDATA.value)),
        timestamp=_from_millis(doc.get("timestamp")) or datetime.now(timezone.utc),
        error_message=doc.get("errorMessage"),
    )


class ConvexConfigStore(ConfigStore):
    def __init__(self, client: ConvexClient):
        self.client = client

    async def list_active(self) -> List[MirrorConfig]:
        docs = await self.client.list_active_configs()
        return [config_from_document(doc) for doc in docs]

    async def update_spend(
        self,
        config_id: str,
        total_spent: Decimal,
        total_executed_trades: int,
        last_executed_at: Optional[datetime],
    ) -> None:
        await self.client.update_config_spend(
            config_id,
            str(total_spent),
            total_executed_trades,
            _to_millis(last_executed_at),
        )


class ConvexEventStore(EventStore):
    def __init__(self, client: ConvexClient):
        self.client = client

    async def find_by_key(
        self,
        watched_address: str,
        tx_hash: str,
        config_id: str,
    ) -> Optional[MirrorEvent]:
        doc = await self.client.find_event(config_id, watched_address.lower(), tx_hash.lower())
        return event_from_document(doc) if doc else None

    async def insert(self, event: MirrorEvent) -> None:
        doc = event_to_document(event)
        doc["watchedAddress"] = event.watched_address.lower()
        doc["originalTxHash"] = event.original_tx_hash.lower()
        await self.client.insert_event(doc)

    async def list_for_account(self, account_name: str, limit: int = 50) -> List[MirrorEvent]:
        docs = await self.client.list_events(account_name, limit)
        return [event_from_document(doc) for doc in docs]
