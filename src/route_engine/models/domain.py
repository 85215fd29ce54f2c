"""Domain models for orders, stops and the external inputs attached to them."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


class StopRole(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class TrafficCondition(str, Enum):
    CLEAR = "clear"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    SEVERE = "severe"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class Order:
    """A pending order assigned to the driver.

    ``pickup_location`` is the vendor coordinate. Source data frequently lacks it,
    in which case the delivery coordinate is used for the pickup leg as well.
    """

    order_id: str
    delivery_location: Coordinate
    vendor_id: Optional[str] = None
    pickup_location: Optional[Coordinate] = None
    delivery_address: Optional[str] = None
    item_count: int = 1

    @property
    def effective_pickup_location(self) -> Coordinate:
        return self.pickup_location or self.delivery_location


@dataclass(frozen=True, slots=True)
class PreparationWindow:
    """Predicted kitchen readiness for an order, supplied by the preparation-time predictor."""

    order_id: str
    estimated_completion: datetime
    confidence: float = 0.8
    vendor_id: Optional[str] = None
    estimated_start: Optional[datetime] = None
    metadata: dict = field(default_factory=dict, compare=False, hash=False)

    def is_ready_by(self, moment: datetime) -> bool:
        return self.estimated_completion <= moment

    @property
    def estimated_duration(self) -> timedelta:
        if self.estimated_start is None:
            return timedelta(0)
        return self.estimated_completion - self.estimated_start
