"""Idempotency gate for mirrored executions."""

from __future__ import annotations

import logging
from typing import Set, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ...db.stores import EventStore

logger = logging.getLogger(__name__)

Key = Tuple[str, str, str]


class ExecutionDeduplicator:
    """
    Skip source transactions that already produced a MirrorEvent.

    The persisted event is the source of truth. The in-process claim set only
    covers the gap between the lookup and the insert when the block feed and
    the webhook path see the same transaction at the same time. Keys whose
    event could not be persisted are remembered as completed for the life of
    the process so a redelivered block cannot execute them again.
    """

    def __init__(self, event_store: EventStore):
        self.event_store = event_store
        self._claims: Set[Key] = set()
        self._completed: Set[Key] = set()

    @staticmethod
    def key(config_id: str, watched_address: str, tx_hash: str) -> Key:
        return (config_id, watched_address.lower(), tx_hash.lower())

    async def already_processed(self, config_id: str, watched_address: str, tx_hash: str) -> bool:
        key = self.key(config_id, watched_address, tx_hash)
        if key in self._claims or key in self._completed:
            return True
        existing = await self.event_store.find_by_key(key[1], key[2], config_id)
        return existing is not None

    def claim(self, config_id: str, watched_address: str, tx_hash: str) -> bool:
        """Reserve a key for this process; False when someone else holds it."""
        key = self.key(config_id, watched_address, tx_hash)
        if key in self._claims:
            logger.debug(f"Mirror for {key} already in flight")
            return False
        self._claims.add(key)
        return True

    def release(self, config_id: str, watched_address: str, tx_hash: str) -> None:
        self._claims.discard(self.key(config_id, watched_address, tx_hash))

    def mark_completed(self, config_id: str, watched_address: str, tx_hash: str) -> None:
        """Remember a key whose event never reached the store."""
        key = self.key(config_id, watched_address, tx_hash)
        logger.warning(f"Mirror for {key} is unrecorded; holding it as completed in this process")
        self._completed.add(key)
