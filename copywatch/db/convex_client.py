"""
Convex client for the mirror config and event tables.

Talks to the Convex HTTP API (``/api/query`` and ``/api/mutation``). The
function paths live in the Convex deployment under ``copyTrading:*``.
"""

from typing import Any, Dict, List, Optional

import httpx

from ..config import settings


class ConvexError(Exception):
    """Base exception for Convex errors."""
    pass


class ConvexAuthError(ConvexError):
    """Deploy key missing or rejected."""
    pass


class ConvexQueryError(ConvexError):
    """Error executing a Convex query."""
    pass


class ConvexMutationError(ConvexError):
    """Error executing a Convex mutation."""
    pass


class ConvexClient:
    """
    Async client for the copy trading Convex functions.

    Example usage:
        client = ConvexClient(
            deployment_url="https://your-deployment.convex.cloud",
            deploy_key="prod:your-deploy-key"
        )
        configs = await client.list_active_configs()
    """

    def __init__(
        self,
        deployment_url: Optional[str] = None,
        deploy_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.deployment_url = (deployment_url or settings.convex_url).rstrip("/")
        self.deploy_key = deploy_key or settings.convex_deploy_key
        self.timeout = timeout

        if not self.deployment_url:
            raise ConvexError("CONVEX_URL is required")

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.deploy_key:
            headers["Authorization"] = f"Convex {self.deploy_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        kind: str,
        function_name: str,
        args: Optional[Dict[str, Any]],
        error_cls: type,
    ) -> Any:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.deployment_url}/api/{kind}",
                json={"path": function_name, "args": args or {}},
            )
            if response.status_code == 401:
                raise ConvexAuthError("Invalid or missing deploy key")

            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise error_cls(f"{kind.capitalize()} {function_name} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise error_cls(f"Request failed: {str(e)}") from e

        if data.get("status") == "error" or "error" in data:
            raise error_cls(data.get("errorMessage") or data.get("error"))
        return data.get("value")

    async def query(self, function_name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """
        Execute a Convex query function.

        Raises:
            ConvexQueryError: If the query fails
        """
        return await self._call("query", function_name, args, ConvexQueryError)

    async def mutation(self, function_name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """
        Execute a Convex mutation function.

        Raises:
            ConvexMutationError: If the mutation fails
        """
        return await self._call("mutation", function_name, args, ConvexMutationError)

    # =========================================================================
    # Copy trading helpers
    # =========================================================================

    async def list_active_configs(self) -> List[Dict[str, Any]]:
        return await self.query("copyTrading:listActiveConfigs") or []

    async def update_config_spend(
        self,
        config_id: str,
        total_spent: str,
        total_executed_trades: int,
        last_executed_at: Optional[int],
    ) -> None:
        await self.mutation(
            "copyTrading:updateSpend",
            {
                "configId": config_id,
                "totalSpent": total_spent,
                "totalExecutedTrades": total_executed_trades,
                "lastExecutedAt": last_executed_at,
            },
        )

    async def find_event(
        self,
        config_id: str,
        watched_address: str,
        tx_hash: str,
    ) -> Optional[Dict[str, Any]]:
        return await self.query(
            "copyTrading:findEvent",
            {"configId": config_id, "watchedAddress": watched_address, "originalTxHash": tx_hash},
        )

    async def insert_event(self, event: Dict[str, Any]) -> str:
        return await self.mutation("copyTrading:insertEvent", event)

    async def list_events(self, account_name: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.query(
            "copyTrading:listEvents",
            {"accountName": account_name, "limit": limit},
        ) or []


# Singleton instance
_convex_client: Optional[ConvexClient] = None


def get_convex_client() -> ConvexClient:
    """Get the singleton Convex client instance."""
    global _convex_client
    if _convex_client is None:
        _convex_client = ConvexClient()
    return _convex_client
