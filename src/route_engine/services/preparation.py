"""Preparation-time prediction collaborators."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, Sequence

from ..models.domain import Order, PreparationWindow

logger = logging.getLogger(__name__)

BASE_PREPARATION_MINUTES = 20
MINUTES_PER_ITEM = 5
QUEUE_DELAY_MINUTES = 10
FALLBACK_CONFIDENCE = 0.6


class PreparationTimePredictor(Protocol):
    def predict(self, orders: Sequence[Order]) -> dict[str, PreparationWindow]:
        ...


class FallbackPreparationPredictor:
    """Rule-of-thumb kitchen estimate used when no trained predictor is available.

    Each order takes 20 minutes plus 5 per item, and the kitchen queue pushes the
    i-th order's start back by 10 minutes per order ahead of it.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def predict(self, orders: Sequence[Order]) -> dict[str, PreparationWindow]:
        now = self.clock()
        windows: dict[str, PreparationWindow] = {}
        for position, order in enumerate(orders):
            start = now + timedelta(minutes=QUEUE_DELAY_MINUTES * position)
            duration = timedelta(minutes=BASE_PREPARATION_MINUTES + MINUTES_PER_ITEM * max(order.item_count, 0))
            windows[order.order_id] = PreparationWindow(
                order_id=order.order_id,
                vendor_id=order.vendor_id,
                estimated_start=start,
                estimated_completion=start + duration,
                confidence=FALLBACK_CONFIDENCE,
                metadata={"source": "fallback", "queue_position": position},
            )
        logger.debug("Fallback preparation windows estimated for %d orders", len(windows))
        return windows
