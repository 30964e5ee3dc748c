"""Async client for the external signing/swap service.

The service owns the execution accounts and their keys; this client only
asks it to price and submit swaps on behalf of a named account.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.chain_types import native_to_wei
from .base import SwapExecution, SwapProvider, SwapQuote


class SwapProviderError(Exception):
    """Swap service rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpSwapProvider(SwapProvider):
    """Thin wrapper around the swap service REST endpoints."""

    name = "swap_service"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        network: str = "base",
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.swap_api_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.swap_api_key
        self.network = network
        self.timeout_s = timeout_s or settings.swap_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "CopywatchSwapClient/2026-10",
        }
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if not self.base_url:
            raise SwapProviderError("Swap service base URL not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json, headers=self._headers())
                if allow_not_found and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            # The service returns JSON error bodies with a useful message
            detail = exc.response.text
            try:
                detail = exc.response.json().get("error", detail)
            except ValueError:
                pass
            raise SwapProviderError(str(detail), status_code=exc.response.status_code) from exc
        except httpx.RequestError as exc:
            raise SwapProviderError(f"Swap service request failed: {exc}") from exc

    async def ready(self) -> bool:
        return bool(self.base_url)

    async def get_account(self, account_name: str) -> Optional[Dict[str, Any]]:
        return await self._request("GET", f"/accounts/{account_name}", allow_not_found=True)

    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount: Decimal,
        taker: str,
    ) -> SwapQuote:
        payload = {
            "network": self.network,
            "fromToken": from_token,
            "toToken": to_token,
            "fromAmount": str(native_to_wei(amount)),
            "taker": taker,
        }
        data = await self._request("POST", "/swaps/price", json=payload) or {}
        to_amount = data.get("toAmount")
        return SwapQuote(
            liquidity_available=bool(data.get("liquidityAvailable")),
            to_amount=Decimal(str(to_amount)) if to_amount is not None else None,
            raw=data,
        )

    async def execute(
        self,
        account_name: str,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: int,
    ) -> SwapExecution:
        payload = {
            "accountName": account_name,
            "network": self.network,
            "fromToken": from_token,
            "toToken": to_token,
            "fromAmount": str(native_to_wei(amount)),
            "slippageBps": slippage_bps,
        }
        data = await self._request("POST", "/swaps", json=payload) or {}
        tx_hash = data.get("transactionHash")
        if not tx_hash:
            raise SwapProviderError(data.get("error") or "Swap service returned no transaction hash")
        to_amount = data.get("toAmount")
        return SwapExecution(
            tx_hash=tx_hash,
            to_amount=Decimal(str(to_amount)) if to_amount is not None else None,
        )
