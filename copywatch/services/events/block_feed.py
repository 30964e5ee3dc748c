"""
Block feed.

Delivers every new block height to the mirror engine exactly in order,
at least once. Two sources sit behind one interface:

- push: ``eth_subscribe("newHeads")`` over a websocket
- poll: ``eth_blockNumber`` every ``poll_interval_seconds``

Sources only report the chain head; the feed owns the cursor and walks the
inclusive range ``[cursor + 1, head]``. Only one source is active at a time.
If the push source cannot subscribe, or its stream dies, the feed switches
to polling for the rest of the process lifetime.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from copywatch.config import settings
from copywatch.core.chain_types import parse_quantity
from copywatch.providers.base import ChainProvider

logger = logging.getLogger(__name__)

BlockHandler = Callable[[int], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]

FEED_MODES = ("auto", "push", "poll")


class BlockSourceError(Exception):
    """A block source could not start or stopped delivering heads."""


class BlockSource(ABC):
    """Yields chain-head heights."""

    name: str

    async def connect(self) -> None:
        """Prepare the source; raise BlockSourceError when it cannot start."""

    @abstractmethod
    def heads(self) -> AsyncIterator[int]:
        pass

    async def close(self) -> None:
        pass


class PollingBlockSource(BlockSource):
    name = "poll"

    def __init__(
        self,
        chain: ChainProvider,
        interval_s: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.chain = chain
        self.interval_s = interval_s or settings.poll_interval_seconds
        self._sleep = sleep

    async def heads(self) -> AsyncIterator[int]:
        while True:
            try:
                yield await asyncio.wait_for(self.chain.current_height(), timeout=self.chain.timeout_s)
            except asyncio.TimeoutError:
                logger.warning("eth_blockNumber timed out, retrying next interval")
            except Exception as e:
                logger.warning(f"eth_blockNumber failed, retrying next interval: {e}")
            await self._sleep(self.interval_s)


class WebSocketBlockSource(BlockSource):
    name = "push"

    def __init__(self, ws_url: Optional[str] = None, open_timeout_s: float = 10.0):
        self.ws_url = ws_url or settings.rpc_ws_url
        self.open_timeout_s = open_timeout_s
        self._ws = None
        self._subscription_id: Optional[str] = None

    async def connect(self) -> None:
        if not self.ws_url:
            raise BlockSourceError("No websocket URL configured")

        subscribe_msg = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": ["newHeads"],
        }
        try:
            self._ws = await websockets.connect(self.ws_url, open_timeout=self.open_timeout_s)
            await self._ws.send(json.dumps(subscribe_msg))
            response = json.loads(
                await asyncio.wait_for(self._ws.recv(), timeout=self.open_timeout_s)
            )
        except Exception as e:
            await self.close()
            raise BlockSourceError(f"newHeads subscription failed: {e}") from e

        if "error" in response or not response.get("result"):
            await self.close()
            raise BlockSourceError(f"newHeads subscription rejected: {response.get('error')}")

        self._subscription_id = response["result"]
        logger.info(f"Subscribed to newHeads ({self._subscription_id})")

    async def heads(self) -> AsyncIterator[int]:
        if self._ws is None:
            raise BlockSourceError("Websocket source not connected")

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON received: {message[:100]}")
                    continue

                if data.get("method") != "eth_subscription":
                    continue
                params = data.get("params") or {}
                if params.get("subscription") != self._subscription_id:
                    continue
                number = (params.get("result") or {}).get("number")
                if number is not None:
                    yield parse_quantity(number)
        except ConnectionClosed as e:
            raise BlockSourceError(f"newHeads stream closed: {e}") from e

        raise BlockSourceError("newHeads stream ended")

    async def close(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {e}")
            self._ws = None


class BlockFeed:
    """
    Drive a block handler from whichever source is active.

    Usage:
        feed = BlockFeed(engine.process_block, chain)
        await feed.start()
    """

    def __init__(
        self,
        handler: BlockHandler,
        chain: ChainProvider,
        *,
        mode: Optional[str] = None,
        push_source: Optional[BlockSource] = None,
        poll_source: Optional[BlockSource] = None,
        max_block_attempts: int = 3,
        sleep: Sleep = asyncio.sleep,
    ):
        self.handler = handler
        self.requested_mode = (mode or settings.block_feed_mode).lower()
        if self.requested_mode not in FEED_MODES:
            raise ValueError(f"block_feed_mode must be one of {FEED_MODES}, got {self.requested_mode}")

        self.push_source = push_source or WebSocketBlockSource()
        self.poll_source = poll_source or PollingBlockSource(chain, sleep=sleep)
        self.max_block_attempts = max_block_attempts

        self.cursor: Optional[int] = None
        self.mode: Optional[str] = None
        self._source: Optional[BlockSource] = None
        self._failed_height: Optional[int] = None
        self._failed_attempts = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info(f"Block feed started (requested mode: {self.requested_mode})")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._source is not None:
            await self._source.close()
        logger.info("Block feed stopped")

    async def _activate(self, source: BlockSource) -> None:
        await source.connect()
        self._source = source
        self.mode = source.name

    async def _select_source(self) -> None:
        if self.requested_mode in ("auto", "push"):
            try:
                await self._activate(self.push_source)
                return
            except BlockSourceError as e:
                logger.warning(f"Push block source unavailable, falling back to polling: {e}")
        await self._activate(self.poll_source)

    async def run(self) -> None:
        self._running = True
        await self._select_source()

        while self._running:
            source = self._source
            try:
                async for head in source.heads():
                    await self.handle_head(head)
                    if not self._running:
                        return
            except BlockSourceError as e:
                if source is self.poll_source:
                    raise
                logger.warning(f"Push block source failed, switching to polling: {e}")
                await source.close()
                await self._activate(self.poll_source)
            else:
                if source is self.poll_source:
                    # A finite poll source only happens in tests
                    return
                await source.close()
                await self._activate(self.poll_source)

    async def handle_head(self, head: int) -> None:
        """Process every height between the cursor and ``head``."""
        if self.cursor is None:
            # Resume from the current head; earlier blocks are not replayed
            self.cursor = head - 1
        if head <= self.cursor:
            return

        for height in range(self.cursor + 1, head + 1):
            handled = await self.handler(height)
            if not handled:
                if self._failed_height != height:
                    self._failed_height = height
                    self._failed_attempts = 0
                self._failed_attempts += 1
                if self._failed_attempts < self.max_block_attempts:
                    logger.warning(
                        f"Block {height} not handled (attempt {self._failed_attempts}), "
                        f"retrying on next head"
                    )
                    return
                logger.error(f"Giving up on block {height} after {self._failed_attempts} attempts")

            self._failed_height = None
            self._failed_attempts = 0
            self.cursor = height

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "mode": self.mode,
            "requested_mode": self.requested_mode,
            "cursor": self.cursor,
        }
