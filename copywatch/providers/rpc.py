"""
JSON-RPC chain provider.

Thin async wrapper over the standard ``eth_*`` methods the mirror engine
needs. Every call is bounded by ``timeout_s``; there is no retry here, the
block feed simply tries again on its next cycle.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.chain_types import Block, TransactionReceipt, parse_quantity
from .base import ChainProvider

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """JSON-RPC call failed or returned an error object."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class JsonRpcChainProvider(ChainProvider):
    """EVM JSON-RPC over HTTP."""

    name = "jsonrpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url or settings.rpc_url
        self.timeout_s = timeout_s or settings.rpc_timeout_seconds
        self._client = client
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "RPC URL not configured"}
        try:
            height = await self.current_height()
            return {"status": "healthy", "block_number": height}
        except Exception as e:
            return {"status": "error", "reason": str(e)}

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        if not self.rpc_url:
            raise RpcError("No RPC URL configured")

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        client = await self._get_client()
        try:
            response = await client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise RpcError(f"{method} failed: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise RpcError(f"{method} request failed: {e}") from e

        if "error" in result:
            error = result["error"] or {}
            raise RpcError(
                f"{method} error: {error.get('message', error)}",
                code=error.get("code") if isinstance(error, dict) else None,
            )

        return result.get("result")

    async def current_height(self) -> int:
        return parse_quantity(await self._rpc_call("eth_blockNumber", []))

    async def get_block(self, height: int, with_transactions: bool = True) -> Optional[Block]:
        raw = await self._rpc_call("eth_getBlockByNumber", [hex(height), with_transactions])
        if not raw:
            return None
        return Block.from_rpc(raw)

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        raw = await self._rpc_call("eth_getTransactionReceipt", [tx_hash])
        if not raw:
            return None
        return TransactionReceipt.from_rpc(raw)

    async def get_code(self, address: str) -> str:
        code = await self._rpc_call("eth_getCode", [address, "latest"])
        return code or "0x"

    async def call(self, to: str, data: str) -> str:
        result = await self._rpc_call("eth_call", [{"to": to, "data": data}, "latest"])
        return result or "0x"
