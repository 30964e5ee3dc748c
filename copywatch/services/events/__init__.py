"""
Block Feed Service

Delivers new block heights to the mirror engine from a websocket
subscription, falling back to polling.
"""

from .block_feed import (
    BlockFeed,
    BlockSource,
    BlockSourceError,
    PollingBlockSource,
    WebSocketBlockSource,
)

__all__ = [
    "BlockFeed",
    "BlockSource",
    "BlockSourceError",
    "PollingBlockSource",
    "WebSocketBlockSource",
]
