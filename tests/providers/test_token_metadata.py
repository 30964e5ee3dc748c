"""
Token metadata provider tests.
"""

import pytest

from copywatch.core.copy_trading import MetadataFetchFailure
from copywatch.providers.token_metadata import (
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    RpcTokenMetadataProvider,
    TokenMetadataError,
    decode_string_result,
)

TOKEN = "0x" + "22" * 20


def abi_string(value: str) -> str:
    raw = value.encode()
    padded = raw.ljust(((len(raw) + 31) // 32) * 32, b"\x00")
    return "0x" + (32).to_bytes(32, "big").hex() + len(raw).to_bytes(32, "big").hex() + padded.hex()


class TestDecodeStringResult:
    def test_abi_string(self):
        assert decode_string_result(abi_string("PEPE")) == "PEPE"

    def test_long_abi_string(self):
        name = "A Token With A Name Longer Than Thirty Two Bytes"
        assert decode_string_result(abi_string(name)) == name

    def test_bytes32_symbol(self):
        assert decode_string_result("0x" + b"MKR".ljust(32, b"\x00").hex()) == "MKR"

    def test_empty_result(self):
        assert decode_string_result("0x") == ""


class TestRpcTokenMetadataProvider:
    @pytest.mark.asyncio
    async def test_reads_symbol_and_name(self, chain):
        chain.call_results[(TOKEN, SYMBOL_SELECTOR)] = abi_string("PEPE")
        chain.call_results[(TOKEN, NAME_SELECTOR)] = abi_string("Pepe")
        provider = RpcTokenMetadataProvider(chain)

        assert await provider.symbol(TOKEN) == "PEPE"
        assert await provider.name(TOKEN) == "Pepe"

    @pytest.mark.asyncio
    async def test_reverted_call_raises(self, chain):
        chain.call_results[(TOKEN, SYMBOL_SELECTOR)] = RuntimeError("execution reverted")

        with pytest.raises(TokenMetadataError):
            await RpcTokenMetadataProvider(chain).symbol(TOKEN)

    @pytest.mark.asyncio
    async def test_empty_result_raises(self, chain):
        with pytest.raises(TokenMetadataError):
            await RpcTokenMetadataProvider(chain).name(TOKEN)

    @pytest.mark.asyncio
    async def test_errors_are_metadata_fetch_failures(self, chain):
        chain.call_results[(TOKEN, NAME_SELECTOR)] = RuntimeError("execution reverted")

        with pytest.raises(MetadataFetchFailure):
            await RpcTokenMetadataProvider(chain).name(TOKEN)
