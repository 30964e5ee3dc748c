"""
Receipt Fallback Scanner

Smart-account, router and aggregator flows often hide the purchased token
behind calldata the classifier cannot read. The token still shows up as an
ERC-20 ``Transfer`` log into the watched address, so the receipt is checked
for those.

A transfer only counts when its sender has bytecode. That keeps plain
wallet-to-wallet sends from looking like trades, but it is a heuristic: it
admits unrelated contract-to-contract transfers and misses flows routed
through an EOA.
"""

from __future__ import annotations

import logging
from typing import Collection, Dict, List

from eth_utils import keccak

from ..chain_types import ChainTransaction, topic_to_address
from ...providers.base import ChainProvider
from .models import Detection, DetectionSource

logger = logging.getLogger(__name__)

TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()

# ERC-20 Transfer has from/to indexed; ERC-721 also indexes tokenId (4 topics)
ERC20_TRANSFER_TOPIC_COUNT = 3


def _has_code(code: str) -> bool:
    return bool(code) and code.lower() not in ("0x", "0x0")


class ReceiptFallbackScanner:
    """Detect buys from Transfer logs in a transaction's receipt."""

    def __init__(self, chain: ChainProvider):
        self.chain = chain

    async def scan(self, tx: ChainTransaction, watched: Collection[str]) -> List[Detection]:
        """
        Return one detection per (watched recipient, token) pair in the receipt.

        Args:
            tx: Source transaction
            watched: Lowercased watched addresses

        Returns:
            Detections, empty when the receipt is missing or unreadable
        """
        try:
            receipt = await self.chain.get_receipt(tx.hash)
        except Exception as e:
            logger.warning(f"Receipt fetch failed for {tx.hash}: {e}")
            return []

        if receipt is None or receipt.status == 0:
            return []

        code_cache: Dict[str, bool] = {}
        detections: List[Detection] = []
        seen = set()

        for log in receipt.logs:
            if len(log.topics) != ERC20_TRANSFER_TOPIC_COUNT or log.topics[0] != TRANSFER_TOPIC:
                continue

            recipient = topic_to_address(log.topics[2])
            if recipient not in watched:
                continue

            sender = topic_to_address(log.topics[1])
            if sender not in code_cache:
                code_cache[sender] = await self._is_contract(sender)
            if not code_cache[sender]:
                logger.debug(f"Ignoring transfer into {recipient} from EOA {sender} in {tx.hash}")
                continue

            key = (recipient, log.address)
            if key in seen:
                continue
            seen.add(key)

            detections.append(
                Detection(
                    watched_address=recipient,
                    original_tx_hash=tx.hash,
                    token_address=log.address,
                    original_amount=tx.value_native if tx.value > 0 else None,
                    source=DetectionSource.RECEIPT,
                    router=tx.to_address,
                    block_number=tx.block_number,
                )
            )

        return detections

    async def _is_contract(self, address: str) -> bool:
        try:
            return _has_code(await self.chain.get_code(address))
        except Exception as e:
            logger.warning(f"eth_getCode failed for {address}, treating as EOA: {e}")
            return False
