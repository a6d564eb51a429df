"""Delivery strategy selection: hosted links vs. a single archive."""

from enum import Enum
from typing import Optional


class DeliveryStrategy(str, Enum):
    INDIVIDUAL = "individual"
    ARCHIVE = "archive"
    DIRECT = "direct"


class OutputStrategySelector:
    """Chooses how a batch is delivered from its transcoded item sizes.

    Every item below ``max_item_bytes`` -> one hosted link per item.
    Any item at or above the ceiling -> the whole batch goes into one
    archive. A single oversized item is returned as a direct file instead
    when ``single_item_direct`` is set.

    Sizes may be fed one at a time with ``observe``; once an oversized item
    has been seen the archive decision sticks.
    """

    def __init__(self, max_item_bytes: int, single_item_direct: bool = True):
        if max_item_bytes < 1:
            raise ValueError("max_item_bytes must be positive")
        self.max_item_bytes = max_item_bytes
        self.single_item_direct = single_item_direct
        self._count = 0
        self._oversized = False

    def observe(self, size: int) -> None:
        self._count += 1
        if size >= self.max_item_bytes:
            self._oversized = True

    def decide(self) -> Optional[DeliveryStrategy]:
        """Decision for the sizes observed so far, or None if nothing was observed."""
        if self._count == 0:
            return None
        if not self._oversized:
            return DeliveryStrategy.INDIVIDUAL
        if self._count == 1 and self.single_item_direct:
            return DeliveryStrategy.DIRECT
        return DeliveryStrategy.ARCHIVE

