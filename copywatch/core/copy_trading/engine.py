"""
Mirror Engine

Turns blocks and inbound push notifications into mirrored trades:

    block -> watched tx -> classifier / receipt fallback -> dedup -> executor

Failures are scoped to one (config, transaction) pair. Nothing raised while
handling one config or one transaction stops the others, and
``process_block`` never raises to the block feed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Union

from ..chain_types import ChainTransaction
from ...logging_config import bind_mirror_context, clear_mirror_context
from ...providers.base import ChainProvider, Notifier
from .classifier import KnownSelector, NativeTransfer, classify_transaction, describe_selector
from .config_cache import ConfigCache
from .dedup import ExecutionDeduplicator
from .errors import ConfigInactiveOrMissing, MirrorError
from .executor import ExecutionResult, TradeExecutor
from .models import Detection, DetectionSource, MirrorConfig, MirrorEventStatus, PushNotification
from .receipt_scanner import ReceiptFallbackScanner

logger = logging.getLogger(__name__)


class MirrorEngine:
    """Detection-to-execution pipeline shared by the block feed and webhooks."""

    def __init__(
        self,
        chain: ChainProvider,
        config_cache: ConfigCache,
        executor: TradeExecutor,
        deduplicator: ExecutionDeduplicator,
        scanner: Optional[ReceiptFallbackScanner] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.chain = chain
        self.config_cache = config_cache
        self.executor = executor
        self.dedup = deduplicator
        self.scanner = scanner or ReceiptFallbackScanner(chain)
        self.notifier = notifier

        self._config_locks: Dict[str, asyncio.Lock] = {}
        self._notify_tasks: Set[asyncio.Task] = set()

        # Stats
        self.blocks_processed = 0
        self.last_block: Optional[int] = None
        self.mirrors_succeeded = 0
        self.mirrors_failed = 0

    def _lock_for(self, config_id: str) -> asyncio.Lock:
        lock = self._config_locks.get(config_id)
        if lock is None:
            lock = self._config_locks[config_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # Entry points
    # =========================================================================

    async def process_block(self, height: int) -> bool:
        """
        Handle every watched transaction in one block.

        Returns:
            False when the block could not be fetched and should be retried,
            True once it has been handled (including per-transaction failures)
        """
        bind_mirror_context(block=height)
        try:
            index = await self.config_cache.refresh()
            if not index:
                self.last_block = height
                return True

            block = await self.chain.get_block(height, with_transactions=True)
            if block is None:
                logger.debug(f"Block {height} not available yet")
                return False

            for tx in block.transactions:
                try:
                    bind_mirror_context(tx_hash=tx.hash)
                    await self.process_transaction(tx)
                except Exception as e:
                    logger.error(f"Transaction {tx.hash} in block {height} failed: {e}", exc_info=True)
                finally:
                    clear_mirror_context("tx_hash")

            self.blocks_processed += 1
            self.last_block = height
            return True
        except Exception as e:
            logger.error(f"Block {height} processing failed: {e}", exc_info=True)
            return False
        finally:
            clear_mirror_context("block")

    async def process_transaction(self, tx: ChainTransaction) -> List[ExecutionResult]:
        sender_watched = await self.config_cache.is_watched(tx.from_address)
        recipient_watched = await self.config_cache.is_watched(tx.to_address)
        if not sender_watched and not recipient_watched:
            return []

        detections = await self.detect(tx, sender_watched=sender_watched)
        results: List[ExecutionResult] = []
        for detection in detections:
            results.extend(await self._mirror_detection(detection))
        return results

    async def detect(self, tx: ChainTransaction, sender_watched: bool = True) -> List[Detection]:
        """Calldata classification first, receipt logs when it yields no buy."""
        detections: List[Detection] = []

        if sender_watched:
            classification = classify_transaction(tx.data, tx.value, tx.to_address)
            if isinstance(classification, (NativeTransfer, KnownSelector)) and classification.token_address:
                source = (
                    DetectionSource.NATIVE_TRANSFER
                    if isinstance(classification, NativeTransfer)
                    else DetectionSource.CALLDATA
                )
                detections.append(
                    Detection(
                        watched_address=tx.from_address,
                        original_tx_hash=tx.hash,
                        token_address=classification.token_address,
                        original_amount=tx.value_native if tx.value > 0 else None,
                        source=source,
                        router=tx.to_address,
                        selector=getattr(classification, "selector", None),
                        is_buy=classification.is_buy,
                        block_number=tx.block_number,
                    )
                )
                logger.debug(
                    f"Classified {tx.hash} as {describe_selector(tx.data)} "
                    f"(buy={classification.is_buy})"
                )

        if not any(d.is_buy for d in detections):
            watched = set(self.config_cache.watched_addresses)
            detections.extend(await self.scanner.scan(tx, watched))

        return detections

    async def handle_push_notification(
        self,
        payload: Union[PushNotification, Dict[str, Any]],
    ) -> List[ExecutionResult]:
        """Feed an inbound wallet-activity event into the same pipeline."""
        if not isinstance(payload, PushNotification):
            payload = PushNotification.model_validate(payload)

        if not payload.is_erc20_transfer:
            logger.debug(f"Ignoring push event of type {payload.event_type}")
            return []
        if not payload.to or not payload.contract_address or not payload.transaction_hash:
            logger.warning("Push transfer missing to/contractAddress/transactionHash, ignoring")
            return []
        if not await self.config_cache.is_watched(payload.to):
            return []

        detection = Detection(
            watched_address=payload.to.lower(),
            original_tx_hash=payload.transaction_hash,
            token_address=payload.contract_address.lower(),
            source=DetectionSource.WEBHOOK,
        )
        return await self._mirror_detection(detection)

    # =========================================================================
    # Per-config execution
    # =========================================================================

    async def _mirror_detection(self, detection: Detection) -> List[ExecutionResult]:
        results: List[ExecutionResult] = []
        for config in await self.config_cache.configs_for(detection.watched_address):
            try:
                result = await self._mirror_for_config(config, detection)
            except Exception as e:
                logger.error(
                    f"Unexpected error mirroring {detection.original_tx_hash} for config {config.id}: {e}",
                    exc_info=True,
                )
                continue
            if result is not None:
                results.append(result)
        return results

    def _passes_filters(self, config: MirrorConfig, detection: Detection) -> bool:
        if config.buy_only and not detection.is_buy:
            logger.debug(f"Skipping non-buy {detection.original_tx_hash} for buy-only config {config.id}")
            return False
        # Webhook detections carry no router to check
        if detection.source != DetectionSource.WEBHOOK and not config.is_router_allowed(detection.router):
            logger.info(
                f"Skipping {detection.original_tx_hash} for config {config.id}: "
                f"router {detection.router} not in allowlist"
            )
            return False
        return True

    async def _mirror_for_config(
        self,
        config: MirrorConfig,
        detection: Detection,
    ) -> Optional[ExecutionResult]:
        if not self._passes_filters(config, detection):
            return None

        key = (config.id, detection.watched_address, detection.original_tx_hash)
        async with self._lock_for(config.id):
            if await self.dedup.already_processed(*key):
                logger.debug(f"Already mirrored {key}, skipping")
                return None
            if not self.dedup.claim(*key):
                return None

            try:
                current = await self.config_cache.get(config.id)
                if current is None or not current.is_active:
                    raise ConfigInactiveOrMissing(f"Config {config.id} is no longer active")
                result = await self.executor.mirror(current, detection)
                if result.success:
                    self.config_cache.record_spend(current)
                if not result.recorded:
                    self.dedup.mark_completed(*key)
            except MirrorError as e:
                logger.info(f"Mirror of {detection.original_tx_hash} for config {config.id} skipped: {e}")
                return None
            finally:
                self.dedup.release(*key)

        if result.success:
            self.mirrors_succeeded += 1
        else:
            self.mirrors_failed += 1
        if result.event is not None:
            self._notify(result)
        return result

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify(self, result: ExecutionResult) -> None:
        if self.notifier is None or result.event is None:
            return
        event = result.event
        outcome = "success" if event.status == MirrorEventStatus.SUCCESS else "failed"
        details = event.model_dump(mode="json")
        task = asyncio.create_task(self._deliver(outcome, details))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _deliver(self, outcome: str, details: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify(outcome, details)
        except Exception as e:
            logger.warning(f"Notification for {details.get('original_tx_hash')} failed: {e}")

    async def drain_notifications(self) -> None:
        """Wait for in-flight notifications (shutdown and tests)."""
        if self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "watched_addresses": len(self.config_cache.watched_addresses),
            "blocks_processed": self.blocks_processed,
            "last_block": self.last_block,
            "mirrors_succeeded": self.mirrors_succeeded,
            "mirrors_failed": self.mirrors_failed,
        }


# =============================================================================
# Singleton
# =============================================================================

_engine: Optional[MirrorEngine] = None


def build_mirror_engine() -> MirrorEngine:
    """Wire the engine from settings."""
    from ...config import settings
    from ...db.convex_client import get_convex_client
    from ...db.stores import (
        ConvexConfigStore,
        ConvexEventStore,
        InMemoryConfigStore,
        InMemoryEventStore,
    )
    from ...providers.rpc import JsonRpcChainProvider
    from ...providers.swap import HttpSwapProvider
    from ...providers.telegram import LoggingNotifier, TelegramNotifier
    from ...providers.token_metadata import RpcTokenMetadataProvider

    chain = JsonRpcChainProvider()

    if settings.has_convex:
        client = get_convex_client()
        config_store = ConvexConfigStore(client)
        event_store = ConvexEventStore(client)
    else:
        logger.warning("CONVEX_URL not set, using in-memory config and event stores")
        config_store = InMemoryConfigStore()
        event_store = InMemoryEventStore()

    config_cache = ConfigCache(
        config_store,
        ttl_seconds=settings.config_cache_ttl_seconds,
        timeout_s=settings.rpc_timeout_seconds,
        default_routers=settings.router_allowlist,
    )
    executor = TradeExecutor(
        swap_provider=HttpSwapProvider(),
        config_store=config_store,
        event_store=event_store,
        metadata_provider=RpcTokenMetadataProvider(chain),
    )
    notifier = TelegramNotifier() if settings.has_telegram else LoggingNotifier()

    return MirrorEngine(
        chain=chain,
        config_cache=config_cache,
        executor=executor,
        deduplicator=ExecutionDeduplicator(event_store),
        notifier=notifier,
    )


def get_mirror_engine() -> MirrorEngine:
    """Get the singleton mirror engine."""
    global _engine
    if _engine is None:
        _engine = build_mirror_engine()
    return _engine
