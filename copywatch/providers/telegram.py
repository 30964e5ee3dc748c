"""Telegram delivery of mirror trade outcomes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from .base import Notifier

logger = logging.getLogger(__name__)


class TelegramNotifier(Notifier):
    """Posts a one-line summary per outcome via the Bot API."""

    base_url = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        timeout_s: float = 10.0,
    ):
        self.bot_token = bot_token or settings.telegram_bot_token
        self.chat_id = chat_id or settings.telegram_chat_id
        self.timeout_s = timeout_s

    @staticmethod
    def format_message(outcome: str, details: Dict[str, Any]) -> str:
        symbol = details.get("token_symbol") or "UNKNOWN"
        amount = details.get("copied_amount", "0")
        line = f"[{outcome}] {details.get('account_name', '?')} mirrored {amount} into {symbol}"
        if details.get("execution_tx_hash"):
            line += f" tx={details['execution_tx_hash']}"
        if details.get("error_message"):
            line += f" error={details['error_message']}"
        return line

    async def notify(self, outcome: str, details: Dict[str, Any]) -> bool:
        if not self.bot_token or not self.chat_id:
            logger.debug("Telegram notifications disabled - bot token or chat id not set")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await client.post(
                    f"{self.base_url}/bot{self.bot_token}/sendMessage",
                    json={"chat_id": self.chat_id, "text": self.format_message(outcome, details)},
                )
                response.raise_for_status()
                return bool(response.json().get("ok"))
        except Exception as e:
            logger.warning(f"Telegram notification failed: {e}")
            return False


class LoggingNotifier(Notifier):
    """Fallback notifier when no delivery channel is configured."""

    async def notify(self, outcome: str, details: Dict[str, Any]) -> bool:
        logger.info(f"Mirror outcome {outcome}: {details}")
        return True
