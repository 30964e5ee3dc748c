"""
Copy Trading Module

Watches target wallets and mirrors their buys up to a delegated budget.
"""

from .models import (
    MirrorConfig,
    MirrorEvent,
    MirrorEventStatus,
    Detection,
    DetectionSource,
    TokenInfo,
    PushNotification,
)
from .errors import (
    MirrorError,
    ConfigInactiveOrMissing,
    InsufficientLiquidity,
    InsufficientDelegation,
    AccountMissing,
    SwapExecutionFailure,
    MetadataFetchFailure,
    DuplicateEventError,
)
from .classifier import (
    Unrecognized,
    NativeTransfer,
    KnownSelector,
    classify_transaction,
    describe_selector,
)
from .sizing import PositionSizer, get_position_sizer
from .config_cache import ConfigCache, build_watch_index
from .dedup import ExecutionDeduplicator
from .receipt_scanner import ReceiptFallbackScanner, TRANSFER_TOPIC
from .executor import TradeExecutor, ExecutionResult
from .engine import MirrorEngine, build_mirror_engine, get_mirror_engine

__all__ = [
    # Models
    "MirrorConfig",
    "MirrorEvent",
    "MirrorEventStatus",
    "Detection",
    "DetectionSource",
    "TokenInfo",
    "PushNotification",
    # Errors
    "MirrorError",
    "ConfigInactiveOrMissing",
    "InsufficientLiquidity",
    "InsufficientDelegation",
    "AccountMissing",
    "SwapExecutionFailure",
    "MetadataFetchFailure",
    "DuplicateEventError",
    # Classifier
    "Unrecognized",
    "NativeTransfer",
    "KnownSelector",
    "classify_transaction",
    "describe_selector",
    # Sizing
    "PositionSizer",
    "get_position_sizer",
    # Pipeline
    "ConfigCache",
    "build_watch_index",
    "ExecutionDeduplicator",
    "ReceiptFallbackScanner",
    "TRANSFER_TOPIC",
    "TradeExecutor",
    "ExecutionResult",
    "MirrorEngine",
    "build_mirror_engine",
    "get_mirror_engine",
]
