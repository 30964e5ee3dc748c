"""
Position Sizing

Mirrored trades are sized against the config's delegation, never against
the watched wallet's portfolio.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from .errors import InsufficientDelegation
from .models import MirrorConfig


class PositionSizer:
    """Bounded sizing: the mirror amount never exceeds what is left to spend."""

    def calculate(
        self,
        config: MirrorConfig,
        original_amount: Optional[Decimal] = None,
    ) -> Decimal:
        """
        Calculate the mirror amount for one detected trade.

        Args:
            config: Mirror configuration holding the delegation and spend
            original_amount: Native amount of the source trade. When unknown
                (receipt or webhook detections) the delegation is used as the
                baseline.

        Returns:
            Amount in native units, always > 0

        Raises:
            InsufficientDelegation: nothing is left to spend
        """
        baseline = config.delegation_amount if original_amount is None else original_amount
        remaining = config.remaining_delegation
        copy_amount = min(remaining, min(config.delegation_amount, baseline))

        if copy_amount <= 0:
            raise InsufficientDelegation(
                f"Config {config.id} has {remaining} of {config.delegation_amount} delegation remaining"
            )

        return copy_amount


_sizer: Optional[PositionSizer] = None


def get_position_sizer() -> PositionSizer:
    global _sizer
    if _sizer is None:
        _sizer = PositionSizer()
    return _sizer
