
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.chain_types import Block, TransactionReceipt


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        if not await self.ready():
            return {"status": "unavailable", "reason": "provider not configured"}
        return {"status": "healthy"}


class ChainProvider(Provider):
    """Read access to an EVM chain"""

    @abstractmethod
    async def current_height(self) -> int:
        """Latest block number"""
        pass

    @abstractmethod
    async def get_block(self, height: int, with_transactions: bool = True) -> Optional[Block]:
        """Block by number, None if the node does not have it yet"""
        pass

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt for a mined transaction"""
        pass

    @abstractmethod
    async def get_code(self, address: str) -> str:
        """Deployed bytecode as hex, ``0x`` for externally-owned accounts"""
        pass

    @abstractmethod
    async def call(self, to: str, data: str) -> str:
        """Read-only eth_call against latest state"""
        pass


@dataclass
class SwapQuote:
    liquidity_available: bool
    to_amount: Optional[Decimal] = None
    raw: Optional[Dict[str, Any]] = None


@dataclass
class SwapExecution:
    tx_hash: str
    to_amount: Optional[Decimal] = None


class SwapProvider(Provider):
    """External signing/swap service owning the execution accounts"""

    @abstractmethod
    async def get_account(self, account_name: str) -> Optional[Dict[str, Any]]:
        """Account record ({"address": ...}) or None when not provisioned"""
        pass

    @abstractmethod
    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount: Decimal,
        taker: str,
    ) -> SwapQuote:
        """Price a swap of ``amount`` native units"""
        pass

    @abstractmethod
    async def execute(
        self,
        account_name: str,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: int,
    ) -> SwapExecution:
        """Execute a swap, raising on failure"""
        pass


class TokenMetadataProvider(Provider):
    """Best-effort token symbol/name lookups"""

    @abstractmethod
    async def symbol(self, address: str) -> str:
        pass

    @abstractmethod
    async def name(self, address: str) -> str:
        pass


class Notifier(ABC):
    """Fire-and-forget outcome delivery"""

    @abstractmethod
    async def notify(self, outcome: str, details: Dict[str, Any]) -> bool:
        pass
