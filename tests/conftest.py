"""Shared fakes for the mirror engine tests."""

import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from copywatch.core.chain_types import (
    Block,
    ChainTransaction,
    ReceiptLog,
    TransactionReceipt,
    address_to_topic,
)
from copywatch.core.copy_trading import (
    ConfigCache,
    ExecutionDeduplicator,
    MirrorConfig,
    MirrorEngine,
    TradeExecutor,
)
from copywatch.core.copy_trading.receipt_scanner import TRANSFER_TOPIC
from copywatch.db.stores import InMemoryConfigStore, InMemoryEventStore
from copywatch.providers.base import (
    ChainProvider,
    SwapExecution,
    SwapProvider,
    SwapQuote,
)
from copywatch.providers.swap import SwapProviderError


WATCHED = "0x" + "11" * 20
TOKEN = "0x" + "22" * 20
ROUTER = "0x" + "33" * 20
POOL = "0x" + "44" * 20
STRANGER = "0x" + "55" * 20
BENEFICIARY = "0x" + "66" * 20

CONTRACT_CODE = "0x6080604052"


class FakeChain(ChainProvider):
    """In-memory chain keyed by block height and tx hash."""

    name = "fake_chain"

    def __init__(self):
        self.height = 0
        self.blocks: Dict[int, Block] = {}
        self.receipts: Dict[str, TransactionReceipt] = {}
        self.code: Dict[str, str] = {}
        self.call_results: Dict[tuple, Any] = {}
        self.code_lookups: List[str] = []
        self.block_error: Optional[Exception] = None

    async def ready(self) -> bool:
        return True

    async def current_height(self) -> int:
        return self.height

    async def get_block(self, height: int, with_transactions: bool = True) -> Optional[Block]:
        if self.block_error:
            raise self.block_error
        return self.blocks.get(height)

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self.receipts.get(tx_hash)

    async def get_code(self, address: str) -> str:
        self.code_lookups.append(address)
        return self.code.get(address.lower(), "0x")

    async def call(self, to: str, data: str) -> str:
        result = self.call_results.get((to.lower(), data), "0x")
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        pass

    def add_block(self, height: int, transactions: List[ChainTransaction]) -> Block:
        for tx in transactions:
            tx.block_number = height
        block = Block(number=height, transactions=transactions)
        self.blocks[height] = block
        self.height = max(self.height, height)
        return block

    def add_transfer_receipt(self, tx_hash: str, token: str, sender: str, recipient: str) -> None:
        log = ReceiptLog(
            address=token,
            topics=[TRANSFER_TOPIC, address_to_topic(sender), address_to_topic(recipient)],
            data="0x" + "00" * 31 + "01",
        )
        receipt = self.receipts.setdefault(tx_hash, TransactionReceipt(transaction_hash=tx_hash))
        receipt.logs.append(log)


class FakeSwapProvider(SwapProvider):
    """Records executions; configurable liquidity and per-account failures."""

    name = "fake_swap"

    def __init__(self):
        self.accounts: Dict[str, Dict[str, Any]] = {
            "alice": {"address": "0x" + "a1" * 20},
            "bob": {"address": "0x" + "b0" * 20},
        }
        self.liquidity = True
        self.failing_accounts: set = set()
        self.quotes: List[Dict[str, Any]] = []
        self.executions: List[Dict[str, Any]] = []

    async def ready(self) -> bool:
        return True

    async def get_account(self, account_name: str) -> Optional[Dict[str, Any]]:
        return self.accounts.get(account_name)

    async def quote(self, from_token: str, to_token: str, amount: Decimal, taker: str) -> SwapQuote:
        self.quotes.append({"to_token": to_token, "amount": amount, "taker": taker})
        return SwapQuote(liquidity_available=self.liquidity, to_amount=Decimal("1000"))

    async def execute(
        self,
        account_name: str,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: int,
    ) -> SwapExecution:
        if account_name in self.failing_accounts:
            raise SwapProviderError("execution reverted")
        self.executions.append(
            {
                "account_name": account_name,
                "to_token": to_token,
                "amount": amount,
                "slippage_bps": slippage_bps,
            }
        )
        return SwapExecution(tx_hash=f"0xexec{len(self.executions)}")


def native_transfer(tx_hash: str, sender: str, to: str, value_native: str) -> ChainTransaction:
    """Plain value transfer with empty calldata."""
    return ChainTransaction(
        hash=tx_hash,
        from_address=sender,
        to_address=to,
        value=int(Decimal(value_native) * 10**18),
        data="0x",
    )


def make_config(**overrides) -> MirrorConfig:
    data = {
        "account_name": "alice",
        "target_wallet_address": WATCHED,
        "delegation_amount": Decimal("1.0"),
    }
    data.update(overrides)
    return MirrorConfig(**data)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def chain():
    """Fake chain provider."""
    return FakeChain()


@pytest.fixture
def swap_provider():
    """Fake swap provider with liquidity for alice and bob."""
    return FakeSwapProvider()


@pytest.fixture
def config_store():
    return InMemoryConfigStore()


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def build_engine(chain, swap_provider, config_store, event_store):
    """Factory wiring a MirrorEngine over the fakes."""

    def _build(notifier=None, metadata=None, clock=time.monotonic, **executor_options) -> MirrorEngine:
        cache = ConfigCache(config_store, ttl_seconds=60, clock=clock)
        executor = TradeExecutor(
            swap_provider,
            config_store,
            event_store,
            metadata_provider=metadata,
            **executor_options,
        )
        return MirrorEngine(
            chain=chain,
            config_cache=cache,
            executor=executor,
            deduplicator=ExecutionDeduplicator(event_store),
            notifier=notifier,
        )

    return _build
