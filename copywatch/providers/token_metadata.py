"""ERC-20 symbol/name lookups over eth_call."""

from __future__ import annotations

import asyncio
from typing import Optional

from ..core.copy_trading.errors import MetadataFetchFailure
from .base import ChainProvider, TokenMetadataProvider

SYMBOL_SELECTOR = "0x95d89b41"  # symbol()
NAME_SELECTOR = "0x06fdde03"  # name()


class TokenMetadataError(MetadataFetchFailure):
    """symbol() or name() could not be read from the token contract."""


def decode_string_result(result: str) -> str:
    """Decode an ABI ``string`` return value, tolerating legacy ``bytes32`` tokens."""
    hex_data = result[2:] if result.startswith("0x") else result
    if not hex_data:
        return ""
    raw = bytes.fromhex(hex_data)

    if len(raw) == 32:
        # bytes32 symbol (e.g. MKR, SAI)
        return raw.rstrip(b"\x00").decode("utf-8", errors="ignore").strip()

    if len(raw) < 64:
        return ""
    offset = int.from_bytes(raw[0:32], "big")
    if offset + 32 > len(raw):
        return ""
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    value = raw[start:start + length]
    return value.decode("utf-8", errors="ignore").strip("\x00").strip()


class RpcTokenMetadataProvider(TokenMetadataProvider):
    """Reads symbol() and name() straight from the token contract."""

    def __init__(self, chain: ChainProvider, timeout_s: Optional[float] = None):
        self.chain = chain
        self.timeout_s = timeout_s or chain.timeout_s

    async def ready(self) -> bool:
        return await self.chain.ready()

    async def _read_string(self, address: str, selector: str, label: str) -> str:
        try:
            result = await asyncio.wait_for(self.chain.call(address, selector), timeout=self.timeout_s)
            value = decode_string_result(result)
        except asyncio.TimeoutError as e:
            raise TokenMetadataError(f"{label}() timed out for {address}") from e
        except Exception as e:
            raise TokenMetadataError(f"{label}() failed for {address}: {e}") from e

        if not value:
            raise TokenMetadataError(f"{label}() returned nothing for {address}")
        return value

    async def symbol(self, address: str) -> str:
        return await self._read_string(address, SYMBOL_SELECTOR, "symbol")

    async def name(self, address: str) -> str:
        return await self._read_string(address, NAME_SELECTOR, "name")


