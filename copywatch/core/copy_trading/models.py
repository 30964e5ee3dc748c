"""
Copy Trading Models

Data structures for mirror configuration, detection and execution records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator
import uuid


class MirrorEventStatus(str, Enum):
    """Outcome of a mirrored trade."""

    SUCCESS = "success"
    FAILED = "failed"


class DetectionSource(str, Enum):
    """Which path surfaced a source transaction."""

    CALLDATA = "calldata"  # Known swap selector
    NATIVE_TRANSFER = "native_transfer"  # Empty calldata with value
    RECEIPT = "receipt"  # Transfer log found in the receipt
    WEBHOOK = "webhook"  # Inbound push notification


class MirrorConfig(BaseModel):
    """Configuration for mirroring one target wallet from one account."""

    id: str = Field(default_factory=lambda: f"copy_{uuid.uuid4().hex[:12]}")
    account_name: str
    target_wallet_address: str
    beneficiary_addresses: List[str] = Field(default_factory=list)

    # Budget
    delegation_amount: Decimal
    max_slippage: Decimal = Decimal("0.05")  # 0.05 = 5%

    # Filters
    buy_only: bool = True
    router_allowlist: List[str] = Field(default_factory=list)  # Empty = no restriction

    # Status and lifetime stats
    is_active: bool = True
    total_executed_trades: int = 0
    total_spent: Decimal = Decimal("0")
    last_executed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("target_wallet_address")
    @classmethod
    def _lower_target(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("beneficiary_addresses", "router_allowlist")
    @classmethod
    def _lower_addresses(cls, value: List[str]) -> List[str]:
        return [v.strip().lower() for v in value if v and v.strip()]

    @property
    def watched_addresses(self) -> List[str]:
        """Target wallet first, then beneficiaries, without duplicates."""
        seen: List[str] = []
        for address in [self.target_wallet_address, *self.beneficiary_addresses]:
            if address not in seen:
                seen.append(address)
        return seen

    @property
    def remaining_delegation(self) -> Decimal:
        return max(Decimal("0"), self.delegation_amount - self.total_spent)

    @property
    def slippage_bps(self) -> int:
        return int(self.max_slippage * Decimal("10000"))

    def is_router_allowed(self, router: Optional[str]) -> bool:
        """Check the transaction's `to` against the router allowlist."""
        if not self.router_allowlist:
            return True
        if not router:
            return False
        return router.lower() in self.router_allowlist

    def record_spend(self, amount: Decimal, executed_at: datetime) -> None:
        """Apply a bounded spend increment after a successful mirror."""
        self.total_spent = min(self.delegation_amount, self.total_spent + amount)
        self.total_executed_trades += 1
        self.last_executed_at = executed_at


class Detection(BaseModel):
    """A buy signal surfaced for a watched address."""

    watched_address: str
    original_tx_hash: str
    token_address: str
    original_amount: Optional[Decimal] = None  # None = use the delegation as baseline
    source: DetectionSource
    router: Optional[str] = None  # Transaction `to`
    selector: Optional[str] = None
    is_buy: bool = True
    block_number: Optional[int] = None


class TokenInfo(BaseModel):
    address: str
    symbol: str = "UNKNOWN"
    name: str = "Unknown Token"


class MirrorEvent(BaseModel):
    """Immutable record of one processed source transaction for one config."""

    id: str = Field(default_factory=lambda: f"event_{uuid.uuid4().hex[:12]}")
    config_id: str
    account_name: str
    target_wallet_address: str
    watched_address: str
    original_tx_hash: str

    token_address: str
    token_symbol: str = "UNKNOWN"
    token_name: str = "Unknown Token"

    original_amount: Decimal
    copied_amount: Decimal = Decimal("0")
    execution_tx_hash: Optional[str] = None

    status: MirrorEventStatus
    source: DetectionSource
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error_message: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def idempotency_key(self) -> tuple[str, str, str]:
        return (self.config_id, self.watched_address.lower(), self.original_tx_hash.lower())


class PushNotification(BaseModel):
    """Inbound wallet-activity webhook body (camelCase as delivered)."""

    event_type: str = Field(alias="eventType")
    to: Optional[str] = None
    from_address: Optional[str] = Field(default=None, alias="from")
    contract_address: Optional[str] = Field(default=None, alias="contractAddress")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    network: Optional[str] = None
    value: Optional[Any] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def is_erc20_transfer(self) -> bool:
        return self.event_type == "erc20_transfer"
