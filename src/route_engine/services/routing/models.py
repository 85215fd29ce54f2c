"""Routing domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ...config import settings
from ...models.domain import Coordinate, Order, StopRole, TrafficCondition


@dataclass(frozen=True, slots=True)
class OptimizationCriteria:
    """Weights of the four scoring criteria. They must be non-negative and sum to 1."""

    distance_weight: float
    preparation_time_weight: float
    traffic_weight: float
    delivery_window_weight: float

    def __post_init__(self) -> None:
        weights = self.as_tuple()
        if any(not math.isfinite(weight) or weight < 0 for weight in weights):
            raise ValueError(f"Invalid optimization criteria: weights must be non-negative, got {weights}")
        total = sum(weights)
        if abs(total - 1.0) > settings.criteria_tolerance:
            raise ValueError(f"Invalid optimization criteria: weights must sum to 1.0, got {total:.6f}")

    @classmethod
    def balanced(cls) -> "OptimizationCriteria":
        return cls(0.4, 0.3, 0.2, 0.1)

    @classmethod
    def distance_focused(cls) -> "OptimizationCriteria":
        return cls(0.6, 0.2, 0.15, 0.05)

    @classmethod
    def time_focused(cls) -> "OptimizationCriteria":
        return cls(0.2, 0.4, 0.3, 0.1)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (
            self.distance_weight,
            self.preparation_time_weight,
            self.traffic_weight,
            self.delivery_window_weight,
        )


CRITERIA_PRESETS = {
    "balanced": OptimizationCriteria.balanced,
    "distance_focused": OptimizationCriteria.distance_focused,
    "time_focused": OptimizationCriteria.time_focused,
}


@dataclass(frozen=True, slots=True)
class RouteWaypoint:
    id: str
    order_id: str
    role: StopRole
    location: Coordinate
    sequence: int
    estimated_arrival: datetime
    estimated_duration: timedelta
    distance_from_previous_km: float
    heading_degrees: float = 0.0
    vendor_id: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OptimizedRoute:
    id: str
    batch_id: str
    waypoints: tuple[RouteWaypoint, ...]
    total_distance_km: float
    total_duration: timedelta
    duration_in_traffic: timedelta
    optimization_score: float
    criteria: OptimizationCriteria
    calculated_at: datetime
    overall_traffic: TrafficCondition = TrafficCondition.UNKNOWN
    metadata: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def pickup_waypoints(self) -> list[RouteWaypoint]:
        return [wp for wp in self.waypoints if wp.role is StopRole.PICKUP]

    @property
    def delivery_waypoints(self) -> list[RouteWaypoint]:
        return [wp for wp in self.waypoints if wp.role is StopRole.DELIVERY]

    @property
    def order_ids(self) -> list[str]:
        return [wp.order_id for wp in self.pickup_waypoints]

    @property
    def traffic_delay(self) -> timedelta:
        return self.duration_in_traffic - self.total_duration

    def waypoints_for_order(self, order_id: str) -> list[RouteWaypoint]:
        return [wp for wp in self.waypoints if wp.order_id == order_id]

    def next_waypoint(self, current_sequence: int) -> RouteWaypoint | None:
        upcoming = [wp for wp in self.waypoints if wp.sequence > current_sequence]
        if not upcoming:
            return None
        return min(upcoming, key=lambda wp: wp.sequence)


@dataclass(slots=True)
class RouteImprovement:
    time_saving: timedelta
    distance_saving_km: float
    score_improvement: float
    is_significant: bool

    @property
    def time_saving_minutes(self) -> float:
        return self.time_saving.total_seconds() / 60.0


@dataclass(frozen=True, slots=True)
class RouteUpdate:
    """Diff emitted when a reoptimized route replaces the current one."""

    route_id: str
    updated_waypoints: tuple[RouteWaypoint, ...]
    new_optimization_score: float
    reason: str
    updated_at: datetime
    changes: dict = field(default_factory=dict, compare=False, hash=False)


class RouteOptimizationError(RuntimeError):
    """Raised when the solver pipeline cannot produce a route from otherwise valid input."""


def pending_orders(route: OptimizedRoute, completed_waypoint_ids: Iterable[str] = ()) -> list[Order]:
    """Orders whose pickup waypoint has not been completed, in current route order."""

    completed = set(completed_waypoint_ids)
    deliveries = {wp.order_id: wp for wp in route.delivery_waypoints}
    orders: list[Order] = []
    for pickup in sorted(route.pickup_waypoints, key=lambda wp: wp.sequence):
        if pickup.id in completed:
            continue
        delivery = deliveries.get(pickup.order_id)
        orders.append(
            Order(
                order_id=pickup.order_id,
                delivery_location=delivery.location if delivery else pickup.location,
                vendor_id=pickup.vendor_id,
                pickup_location=pickup.location,
                delivery_address=delivery.address if delivery else None,
            )
        )
    return orders


def onboard_orders(route: OptimizedRoute, completed_waypoint_ids: Iterable[str] = ()) -> list[Order]:
    """Orders already picked up but not yet delivered, in current delivery order.

    An order is on board when its delivery waypoint is pending and it has no pending
    pickup waypoint, either because the pickup was completed or because the route
    only carries its delivery leg.
    """

    completed = set(completed_waypoint_ids)
    awaiting_pickup = {wp.order_id for wp in route.pickup_waypoints if wp.id not in completed}
    orders: list[Order] = []
    for delivery in sorted(route.delivery_waypoints, key=lambda wp: wp.sequence):
        if delivery.id in completed or delivery.order_id in awaiting_pickup:
            continue
        orders.append(
            Order(
                order_id=delivery.order_id,
                delivery_location=delivery.location,
                vendor_id=delivery.vendor_id,
                delivery_address=delivery.address,
            )
        )
    return orders
