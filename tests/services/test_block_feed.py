"""
Block feed tests.
"""

import json
import pytest
from typing import List
from unittest.mock import AsyncMock

from copywatch.services.events import (
    BlockFeed,
    BlockSource,
    BlockSourceError,
    PollingBlockSource,
    WebSocketBlockSource,
)


class ScriptedSource(BlockSource):
    """Yields a fixed list of heads, optionally failing to connect or dying."""

    def __init__(self, name: str, heads: List[int], fail_connect: bool = False, die: bool = False):
        self.name = name
        self._heads = heads
        self.fail_connect = fail_connect
        self.die = die
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        if self.fail_connect:
            raise BlockSourceError("subscription refused")
        self.connected = True

    async def heads(self):
        for head in self._heads:
            yield head
        if self.die:
            raise BlockSourceError("stream died")

    async def close(self) -> None:
        self.closed = True


class RecordingHandler:
    def __init__(self, fail_heights=None):
        self.heights: List[int] = []
        self.fail_heights = set(fail_heights or [])

    async def __call__(self, height: int) -> bool:
        self.heights.append(height)
        return height not in self.fail_heights


def make_feed(handler, mode="auto", push=None, poll=None, **kwargs):
    return BlockFeed(
        handler,
        chain=None,
        mode=mode,
        push_source=push or ScriptedSource("push", []),
        poll_source=poll or ScriptedSource("poll", []),
        **kwargs,
    )


# =============================================================================
# Cursor handling
# =============================================================================


class TestCursor:
    @pytest.mark.asyncio
    async def test_first_head_starts_at_head(self):
        handler = RecordingHandler()
        feed = make_feed(handler)

        await feed.handle_head(500)

        assert handler.heights == [500]
        assert feed.cursor == 500

    @pytest.mark.asyncio
    async def test_range_is_inclusive_and_ordered(self):
        handler = RecordingHandler()
        feed = make_feed(handler)

        await feed.handle_head(100)
        await feed.handle_head(104)

        assert handler.heights == [100, 101, 102, 103, 104]
        assert feed.cursor == 104

    @pytest.mark.asyncio
    async def test_stale_heads_ignored(self):
        handler = RecordingHandler()
        feed = make_feed(handler)

        await feed.handle_head(100)
        await feed.handle_head(100)
        await feed.handle_head(99)

        assert handler.heights == [100]

    @pytest.mark.asyncio
    async def test_unhandled_block_retried_then_skipped(self):
        handler = RecordingHandler(fail_heights={101})
        feed = make_feed(handler, max_block_attempts=3)

        await feed.handle_head(100)
        await feed.handle_head(102)
        assert feed.cursor == 100
        await feed.handle_head(102)
        assert feed.cursor == 100
        await feed.handle_head(102)

        assert handler.heights == [100, 101, 101, 101, 102]
        assert feed.cursor == 102


# =============================================================================
# Source selection
# =============================================================================


class TestSourceSelection:
    @pytest.mark.asyncio
    async def test_push_used_when_available(self):
        handler = RecordingHandler()
        push = ScriptedSource("push", [10, 11])
        poll = ScriptedSource("poll", [])
        feed = make_feed(handler, push=push, poll=poll)

        await feed.run()

        assert handler.heights == [10, 11]
        assert push.connected is True
        # Push stream ended, so the feed moved to polling
        assert feed.mode == "poll"

    @pytest.mark.asyncio
    async def test_push_connect_failure_falls_back_to_poll(self):
        handler = RecordingHandler()
        push = ScriptedSource("push", [999], fail_connect=True)
        poll = ScriptedSource("poll", [20, 22])
        feed = make_feed(handler, push=push, poll=poll)

        await feed.run()

        assert handler.heights == [20, 21, 22]
        assert feed.mode == "poll"

    @pytest.mark.asyncio
    async def test_push_dying_switches_to_poll_without_gaps(self):
        handler = RecordingHandler()
        push = ScriptedSource("push", [10, 11], die=True)
        poll = ScriptedSource("poll", [14])
        feed = make_feed(handler, push=push, poll=poll)

        await feed.run()

        assert handler.heights == [10, 11, 12, 13, 14]
        assert push.closed is True
        assert feed.cursor == 14

    @pytest.mark.asyncio
    async def test_poll_mode_never_touches_push(self):
        handler = RecordingHandler()
        push = ScriptedSource("push", [1])
        poll = ScriptedSource("poll", [5])
        feed = make_feed(handler, mode="poll", push=push, poll=poll)

        await feed.run()

        assert push.connected is False
        assert handler.heights == [5]

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValueError):
            make_feed(RecordingHandler(), mode="carrier-pigeon")


# =============================================================================
# Sources
# =============================================================================


class TestPollingBlockSource:
    @pytest.mark.asyncio
    async def test_polls_height_every_interval(self, chain):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        chain.height = 10
        source = PollingBlockSource(chain, interval_s=7, sleep=fake_sleep)
        heads = source.heads()

        assert await heads.__anext__() == 10
        chain.height = 12
        assert await heads.__anext__() == 12
        await heads.aclose()

        assert sleeps == [7]

    @pytest.mark.asyncio
    async def test_rpc_error_skips_a_cycle(self, chain):
        async def fake_sleep(seconds):
            pass

        chain.current_height = AsyncMock(side_effect=[RuntimeError("timeout"), 30])
        heads = PollingBlockSource(chain, interval_s=7, sleep=fake_sleep).heads()

        assert await heads.__anext__() == 30
        await heads.aclose()


class FakeWebSocket:
    def __init__(self, subscribe_response, messages):
        self.sent = []
        self._subscribe_response = subscribe_response
        self._messages = messages
        self.closed = False

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def recv(self):
        return json.dumps(self._subscribe_response)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message


class TestWebSocketBlockSource:
    @pytest.mark.asyncio
    async def test_subscribes_and_yields_heads(self, monkeypatch):
        ws = FakeWebSocket(
            {"jsonrpc": "2.0", "id": 1, "result": "0xsub"},
            [
                json.dumps({"method": "eth_subscription", "params": {"subscription": "0xsub", "result": {"number": "0x64"}}}),
                "not json",
                json.dumps({"method": "eth_subscription", "params": {"subscription": "0xother", "result": {"number": "0x1"}}}),
                json.dumps({"method": "eth_subscription", "params": {"subscription": "0xsub", "result": {"number": "0x65"}}}),
            ],
        )
        monkeypatch.setattr(
            "copywatch.services.events.block_feed.websockets.connect",
            AsyncMock(return_value=ws),
        )
        source = WebSocketBlockSource(ws_url="wss://node.example")

        await source.connect()
        heads = []
        with pytest.raises(BlockSourceError):
            async for head in source.heads():
                heads.append(head)

        assert ws.sent[0]["method"] == "eth_subscribe"
        assert ws.sent[0]["params"] == ["newHeads"]
        assert heads == [100, 101]

    @pytest.mark.asyncio
    async def test_rejected_subscription_raises(self, monkeypatch):
        ws = FakeWebSocket({"jsonrpc": "2.0", "id": 1, "error": {"message": "not supported"}}, [])
        monkeypatch.setattr(
            "copywatch.services.events.block_feed.websockets.connect",
            AsyncMock(return_value=ws),
        )

        with pytest.raises(BlockSourceError):
            await WebSocketBlockSource(ws_url="wss://node.example").connect()
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_missing_url_raises(self):
        with pytest.raises(BlockSourceError):
            await WebSocketBlockSource(ws_url="").connect()
