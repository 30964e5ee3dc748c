"""
Copy trading error taxonomy.

Each failure is scoped to one (config, transaction) pair; the engine turns
these into failed mirror events instead of letting them escape a block.
"""

from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base exception for mirror trade failures."""

    #: Whether a failed MirrorEvent should be persisted for this error.
    records_event: bool = True


class ConfigInactiveOrMissing(MirrorError):
    """Config was deactivated or deleted between detection and execution."""

    records_event = False


class InsufficientLiquidity(MirrorError):
    """The swap provider reported no route for the mirrored amount."""


class InsufficientDelegation(MirrorError):
    """The config's remaining delegation cannot fund another trade."""


class AccountMissing(MirrorError):
    """The execution account has not been provisioned with the swap provider."""

    def __init__(self, account_name: str):
        super().__init__(
            f"Execution account '{account_name}' is not provisioned; "
            f"create it with the signing provider before enabling copy trading"
        )
        self.account_name = account_name


class SwapExecutionFailure(MirrorError):
    """The swap was attempted and failed after the liquidity check."""

    def __init__(self, message: str, provider_error: Optional[str] = None):
        super().__init__(message)
        self.provider_error = provider_error


class MetadataFetchFailure(MirrorError):
    """Token symbol/name could not be read; callers fall back to placeholders."""

    records_event = False


class DuplicateEventError(Exception):
    """An event with the same idempotency key already exists."""
