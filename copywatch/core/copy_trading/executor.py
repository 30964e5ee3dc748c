"""
Trade Executor

Sizes, quotes and executes one mirrored trade for one config, then records
the outcome. Provider errors are translated into the mirror error taxonomy
here so the engine only ever sees ``MirrorError`` subclasses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from ...config import settings
from ...providers.base import SwapProvider, TokenMetadataProvider
from .errors import (
    AccountMissing,
    DuplicateEventError,
    InsufficientLiquidity,
    MetadataFetchFailure,
    MirrorError,
    SwapExecutionFailure,
)
from .models import Detection, MirrorConfig, MirrorEvent, MirrorEventStatus, TokenInfo
from .sizing import PositionSizer, get_position_sizer

if TYPE_CHECKING:
    from ...db.stores import ConfigStore, EventStore

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of one mirror attempt."""

    success: bool
    event: Optional[MirrorEvent] = None
    copied_amount: Decimal = Decimal("0")
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    recorded: bool = True  # False when the event could not be persisted


class TradeExecutor:
    """Execute mirrored buys through the swap provider."""

    def __init__(
        self,
        swap_provider: SwapProvider,
        config_store: ConfigStore,
        event_store: EventStore,
        metadata_provider: Optional[TokenMetadataProvider] = None,
        sizer: Optional[PositionSizer] = None,
        native_token_address: Optional[str] = None,
        metadata_timeout_s: Optional[float] = None,
        insert_attempts: int = 3,
        insert_retry_delay_s: float = 0.5,
    ):
        self.swap = swap_provider
        self.config_store = config_store
        self.event_store = event_store
        self.metadata = metadata_provider
        self.sizer = sizer or get_position_sizer()
        self.native_token_address = native_token_address or settings.native_token_address
        self.metadata_timeout_s = metadata_timeout_s or settings.rpc_timeout_seconds
        self.store_timeout_s = settings.rpc_timeout_seconds
        self.insert_attempts = max(1, insert_attempts)
        self.insert_retry_delay_s = insert_retry_delay_s

    async def fetch_token_info(self, token_address: str) -> TokenInfo:
        """Best-effort symbol and name; placeholders when either read fails."""
        info = TokenInfo(address=token_address)
        if self.metadata is None:
            return info

        try:
            info.symbol, info.name = await asyncio.wait_for(
                asyncio.gather(
                    self._read_metadata(self.metadata.symbol, token_address, info.symbol),
                    self._read_metadata(self.metadata.name, token_address, info.name),
                ),
                timeout=self.metadata_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Token metadata timed out for {token_address}, using placeholders")
        return info

    async def _read_metadata(
        self,
        read: Callable[[str], Awaitable[str]],
        token_address: str,
        placeholder: str,
    ) -> str:
        try:
            return await read(token_address)
        except MetadataFetchFailure as e:
            logger.warning(f"Token metadata unavailable for {token_address}, using '{placeholder}': {e}")
        except Exception as e:
            logger.warning(
                f"Unexpected token metadata error for {token_address}, using '{placeholder}': "
                f"{type(e).__name__}: {e}"
            )
        return placeholder

    async def mirror(self, config: MirrorConfig, detection: Detection) -> ExecutionResult:
        """
        Mirror one detected buy for one config.

        Args:
            config: Matched config; its spend counters are updated in place on success
            detection: The buy signal

        Returns:
            Execution result carrying the recorded event, if any

        Raises:
            MirrorError: only for failures that do not record an event
        """
        original_amount = detection.original_amount
        if original_amount is None:
            original_amount = config.delegation_amount

        # Metadata only feeds the event record, so it runs alongside the swap
        token_task = asyncio.create_task(self.fetch_token_info(detection.token_address))

        try:
            copy_amount = self.sizer.calculate(config, original_amount)
            account = await self._require_account(config.account_name)
            await self._check_liquidity(config, detection, copy_amount, account["address"])
            execution = await self._execute_swap(config, detection, copy_amount)
        except MirrorError as e:
            if not e.records_event:
                token_task.cancel()
                raise
            logger.warning(
                f"Mirror of {detection.original_tx_hash} for config {config.id} failed: "
                f"{type(e).__name__}: {e}"
            )
            event = self._build_event(
                config,
                detection,
                await token_task,
                original_amount=original_amount,
                status=MirrorEventStatus.FAILED,
                error_message=f"{type(e).__name__}: {e}",
            )
            recorded = await self._insert_event(event)
            return ExecutionResult(
                success=False,
                event=event,
                error_message=event.error_message,
                recorded=recorded,
            )

        executed_at = datetime.now(timezone.utc)
        event = self._build_event(
            config,
            detection,
            await token_task,
            original_amount=original_amount,
            status=MirrorEventStatus.SUCCESS,
            copied_amount=copy_amount,
            execution_tx_hash=execution.tx_hash,
            timestamp=executed_at,
        )
        recorded = await self._insert_event(event)
        await self._apply_spend(config, copy_amount, executed_at)

        logger.info(
            f"Mirrored {detection.original_tx_hash} for {config.account_name}: "
            f"{copy_amount} native into {event.token_symbol} ({detection.token_address}), "
            f"tx {execution.tx_hash}"
        )
        return ExecutionResult(
            success=True,
            event=event,
            copied_amount=copy_amount,
            tx_hash=execution.tx_hash,
            recorded=recorded,
        )

    async def _require_account(self, account_name: str) -> dict:
        try:
            account = await self.swap.get_account(account_name)
        except Exception as e:
            raise SwapExecutionFailure(f"Account lookup failed: {e}", provider_error=str(e)) from e
        if not account or not account.get("address"):
            raise AccountMissing(account_name)
        return account

    async def _check_liquidity(
        self,
        config: MirrorConfig,
        detection: Detection,
        amount: Decimal,
        taker: str,
    ) -> None:
        try:
            quote = await self.swap.quote(
                self.native_token_address,
                detection.token_address,
                amount,
                taker,
            )
        except Exception as e:
            raise SwapExecutionFailure(f"Quote failed: {e}", provider_error=str(e)) from e

        if not quote.liquidity_available:
            raise InsufficientLiquidity(
                f"No liquidity for {amount} native into {detection.token_address}"
            )

    async def _execute_swap(self, config: MirrorConfig, detection: Detection, amount: Decimal):
        try:
            return await self.swap.execute(
                config.account_name,
                self.native_token_address,
                detection.token_address,
                amount,
                config.slippage_bps,
            )
        except Exception as e:
            raise SwapExecutionFailure(f"Swap failed: {e}", provider_error=str(e)) from e

    def _build_event(
        self,
        config: MirrorConfig,
        detection: Detection,
        token: TokenInfo,
        *,
        original_amount: Decimal,
        status: MirrorEventStatus,
        copied_amount: Decimal = Decimal("0"),
        execution_tx_hash: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> MirrorEvent:
        return MirrorEvent(
            config_id=config.id,
            account_name=config.account_name,
            target_wallet_address=config.target_wallet_address,
            watched_address=detection.watched_address,
            original_tx_hash=detection.original_tx_hash,
            token_address=detection.token_address,
            token_symbol=token.symbol,
            token_name=token.name,
            original_amount=original_amount,
            copied_amount=copied_amount,
            execution_tx_hash=execution_tx_hash,
            status=status,
            source=detection.source,
            timestamp=timestamp or datetime.now(timezone.utc),
            error_message=error_message,
        )

    async def _insert_event(self, event: MirrorEvent) -> bool:
        """Persist the event, retrying briefly; False when it could not be stored."""
        for attempt in range(1, self.insert_attempts + 1):
            try:
                await asyncio.wait_for(self.event_store.insert(event), timeout=self.store_timeout_s)
                return True
            except DuplicateEventError:
                logger.warning(f"Mirror event {event.idempotency_key} already recorded")
                return True
            except Exception as e:
                logger.warning(
                    f"Recording mirror event {event.idempotency_key} failed "
                    f"(attempt {attempt}/{self.insert_attempts}): {type(e).__name__}: {e}"
                )
            if attempt < self.insert_attempts:
                await asyncio.sleep(self.insert_retry_delay_s * attempt)

        logger.error(f"Giving up recording mirror event {event.idempotency_key}")
        return False

    async def _apply_spend(self, config: MirrorConfig, amount: Decimal, executed_at: datetime) -> None:
        # The cached config is updated first so later detections in this TTL see the spend
        config.record_spend(amount, executed_at)
        try:
            await self.config_store.update_spend(
                config.id,
                config.total_spent,
                config.total_executed_trades,
                config.last_executed_at,
            )
        except Exception as e:
            logger.error(f"Failed to persist spend for config {config.id}: {e}", exc_info=True)
