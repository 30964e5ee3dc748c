"""
Chain data shapes consumed by the mirror engine.

JSON-RPC returns hex quantities and camelCase keys; these models normalise
them once at the provider boundary so the rest of the engine works with
ints and lowercase addresses.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

WEI_PER_NATIVE = Decimal(10) ** 18

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string, int or None) into an int."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return 0
    if text.lower().startswith("0x"):
        return int(text, 16) if len(text) > 2 else 0
    return int(text)


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Lowercase an address, keeping None for contract creations."""
    if not address:
        return None
    return address.strip().lower()


def wei_to_native(value_wei: int) -> Decimal:
    return Decimal(value_wei) / WEI_PER_NATIVE


def native_to_wei(amount: Decimal) -> int:
    return int((amount * WEI_PER_NATIVE).to_integral_value())


def topic_to_address(topic: str) -> str:
    """Extract the address held in the low 20 bytes of a 32-byte topic."""
    hex_part = topic[2:] if topic.startswith("0x") else topic
    return "0x" + hex_part[-40:].lower()


def address_to_topic(address: str) -> str:
    """Zero-pad an address to a 32-byte topic."""
    hex_part = address[2:] if address.startswith("0x") else address
    return "0x" + hex_part.lower().rjust(64, "0")


class ChainTransaction(BaseModel):
    """A transaction as included in a block."""

    hash: str
    from_address: str
    to_address: Optional[str] = None
    value: int = 0  # wei
    data: str = "0x"
    block_number: Optional[int] = None

    @property
    def value_native(self) -> Decimal:
        return wei_to_native(self.value)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "ChainTransaction":
        return cls(
            hash=raw.get("hash", ""),
            from_address=normalize_address(raw.get("from")) or "",
            to_address=normalize_address(raw.get("to")),
            value=parse_quantity(raw.get("value")),
            data=raw.get("input") or raw.get("data") or "0x",
            block_number=parse_quantity(raw["blockNumber"]) if raw.get("blockNumber") else None,
        )


class Block(BaseModel):
    number: int
    hash: Optional[str] = None
    timestamp: Optional[int] = None
    transactions: List[ChainTransaction] = Field(default_factory=list)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "Block":
        number = parse_quantity(raw.get("number"))
        transactions = []
        for tx in raw.get("transactions") or []:
            # Blocks fetched without full transactions only carry hashes
            if isinstance(tx, dict):
                parsed = ChainTransaction.from_rpc(tx)
                if parsed.block_number is None:
                    parsed.block_number = number
                transactions.append(parsed)
        return cls(
            number=number,
            hash=raw.get("hash"),
            timestamp=parse_quantity(raw.get("timestamp")) if raw.get("timestamp") else None,
            transactions=transactions,
        )


class ReceiptLog(BaseModel):
    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "ReceiptLog":
        return cls(
            address=normalize_address(raw.get("address")) or "",
            topics=[t.lower() for t in raw.get("topics") or []],
            data=raw.get("data") or "0x",
        )


class TransactionReceipt(BaseModel):
    transaction_hash: str
    status: int = 1
    logs: List[ReceiptLog] = Field(default_factory=list)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "TransactionReceipt":
        return cls(
            transaction_hash=raw.get("transactionHash", ""),
            status=parse_quantity(raw.get("status", "0x1")),
            logs=[ReceiptLog.from_rpc(log) for log in raw.get("logs") or []],
        )


__all__ = [
    "WEI_PER_NATIVE",
    "ZERO_ADDRESS",
    "parse_quantity",
    "normalize_address",
    "wei_to_native",
    "native_to_wei",
    "topic_to_address",
    "address_to_topic",
    "ChainTransaction",
    "Block",
    "ReceiptLog",
    "TransactionReceipt",
]
