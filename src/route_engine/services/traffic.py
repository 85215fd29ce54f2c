"""Traffic condition collaborators."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

from ..models.domain import Coordinate, Order, TrafficCondition


class TrafficSource(Protocol):
    def lookup(self, orders: Sequence[Order], driver_location: Coordinate) -> dict[str, TrafficCondition]:
        ...


def base_condition_for_hour(hour: int) -> TrafficCondition:
    if 7 <= hour <= 9 or 17 <= hour <= 19:
        return TrafficCondition.HEAVY
    if 11 <= hour <= 14:
        return TrafficCondition.MODERATE
    return TrafficCondition.LIGHT


class SimulatedTrafficSource:
    """Time-of-day traffic with random per-order variation."""

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def lookup(self, orders: Sequence[Order], driver_location: Coordinate) -> dict[str, TrafficCondition]:
        base = base_condition_for_hour(self.clock().hour)
        conditions: dict[str, TrafficCondition] = {}
        for order in orders:
            draw = self.rng.random()
            if draw < 0.2:
                conditions[order.order_id] = TrafficCondition.SEVERE
            elif draw < 0.4:
                conditions[order.order_id] = TrafficCondition.HEAVY
            elif draw < 0.7:
                conditions[order.order_id] = base
            else:
                conditions[order.order_id] = TrafficCondition.LIGHT
        return conditions
