"""
Ambient block-height clock.

All deadlines (voting windows, membership expiry) are block heights compared
against the clock, never wall-clock waits.
"""

import logging
from abc import ABC, abstractmethod

from .errors.exceptions import ValidationError

logger = logging.getLogger(__name__)


class BlockClock(ABC):
    """Source of the current block height."""

    @abstractmethod
    def current_block(self) -> int:
        """Return the current block height."""
        pass


class ManualBlockClock(BlockClock):
    """Block clock advanced explicitly by the surrounding ledger."""

    def __init__(self, start_block: int = 0):
        if start_block < 0:
            raise ValidationError("Start block cannot be negative", field="start_block", value=start_block)
        self._block = start_block

    def current_block(self) -> int:
        return self._block

    def advance(self, blocks: int = 1) -> int:
        """Move the clock forward and return the new height."""
        if blocks < 0:
            raise ValidationError("Block clock cannot move backwards", field="blocks", value=blocks)
        self._block += blocks
        logger.debug(f"Block clock advanced to {self._block}")
        return self._block

    def set_block(self, block_height: int) -> None:
        """Jump to ``block_height``; it must not be behind the current height."""
        if block_height < self._block:
            raise ValidationError(
                "Block clock cannot move backwards",
                field="block_height",
                value=block_height,
                expected=f">= {self._block}",
            )
        self._block = block_height
