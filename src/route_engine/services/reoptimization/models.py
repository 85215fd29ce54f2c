"""Reoptimization controller models."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import NewType, Optional, Union

from ...config import settings
from ...models.domain import Coordinate, TrafficCondition
from ..routing.models import OptimizedRoute, RouteImprovement, RouteWaypoint

RouteId = NewType("RouteId", str)


class RouteNotMonitoredError(KeyError):
    """Raised when an event or query targets a route that is not being monitored."""


class RouteEventType(str, Enum):
    TRAFFIC_INCIDENT = "traffic_incident"
    PREPARATION_DELAY = "preparation_delay"
    ORDER_READY = "order_ready"
    CUSTOMER_REQUEST = "customer_request"
    DRIVER_LOCATION_UPDATE = "driver_location_update"
    WAYPOINT_COMPLETED = "waypoint_completed"


class ReoptimizationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CustomerRequestType(str, Enum):
    URGENT_DELIVERY = "urgent_delivery"
    CHANGE_ADDRESS = "change_address"
    CANCEL_ORDER = "cancel_order"


@dataclass(frozen=True, slots=True)
class TrafficIncident:
    location: Coordinate
    severity: TrafficCondition
    estimated_delay_minutes: float
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PreparationDelay:
    """Kitchen load moved from ``previous_load`` to ``new_load`` (both in [0, 1])."""

    vendor_id: Optional[str]
    previous_load: float
    new_load: float
    order_id: Optional[str] = None

    @property
    def load_change(self) -> float:
        return self.new_load - self.previous_load


@dataclass(frozen=True, slots=True)
class OrderReady:
    order_id: str


@dataclass(frozen=True, slots=True)
class CustomerRequest:
    order_id: str
    request_type: CustomerRequestType
    details: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DriverLocationUpdate:
    driver_id: str
    location: Coordinate


@dataclass(frozen=True, slots=True)
class WaypointCompleted:
    waypoint_id: str
    order_id: Optional[str] = None


EventPayload = Union[
    TrafficIncident,
    PreparationDelay,
    OrderReady,
    CustomerRequest,
    DriverLocationUpdate,
    WaypointCompleted,
]

PAYLOAD_TYPES: dict[RouteEventType, type] = {
    RouteEventType.TRAFFIC_INCIDENT: TrafficIncident,
    RouteEventType.PREPARATION_DELAY: PreparationDelay,
    RouteEventType.ORDER_READY: OrderReady,
    RouteEventType.CUSTOMER_REQUEST: CustomerRequest,
    RouteEventType.DRIVER_LOCATION_UPDATE: DriverLocationUpdate,
    RouteEventType.WAYPOINT_COMPLETED: WaypointCompleted,
}


@dataclass(frozen=True, slots=True)
class RouteEvent:
    id: str
    route_id: RouteId
    event_type: RouteEventType
    payload: EventPayload
    timestamp: datetime

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.event_type]
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"Event {self.id} of type {self.event_type.value} needs a {expected.__name__} payload, "
                f"got {type(self.payload).__name__}."
            )


@dataclass(frozen=True, slots=True)
class ReoptimizationAnalysis:
    is_recommended: bool
    reason: str
    confidence: float = 0.0
    estimated_time_saving: timedelta = timedelta(0)
    priority: ReoptimizationPriority = ReoptimizationPriority.LOW
    metadata: dict = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def declined(cls, reason: str, **metadata) -> "ReoptimizationAnalysis":
        return cls(is_recommended=False, reason=reason, metadata=metadata)


class ReoptimizationOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NOT_RECOMMENDED = "not_recommended"
    COOLDOWN = "cooldown"
    RATE_LIMITED = "rate_limited"
    DUPLICATE = "duplicate"
    NO_REMAINING_ORDERS = "no_remaining_orders"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReoptimizationEvent:
    """Published on the ``reoptimization_events`` stream for every evaluated event."""

    route_id: RouteId
    event: RouteEvent
    outcome: ReoptimizationOutcome
    reason: str
    timestamp: datetime
    analysis: Optional[ReoptimizationAnalysis] = None
    improvement: Optional[RouteImprovement] = None


@dataclass(frozen=True, slots=True)
class DriverNotification:
    id: str
    driver_id: str
    route_id: RouteId
    title: str
    message: str
    timestamp: datetime
    is_urgent: bool
    notification_type: str = "route_reoptimized"
    data: dict = field(default_factory=dict, compare=False, hash=False)


@dataclass(slots=True)
class RouteReoptimizationState:
    """Mutable per-route record owned by the controller."""

    route_id: RouteId
    driver_id: str
    current_route: OptimizedRoute
    last_reoptimization: datetime
    is_monitoring: bool = True
    accepted_at: deque = field(default_factory=deque)
    recent_event_ids: deque = field(default_factory=lambda: deque(maxlen=settings.recent_event_history))
    completed_waypoint_ids: set = field(default_factory=set)
    last_known_location: Optional[Coordinate] = None
    last_checked_at: Optional[datetime] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def prune_rate_window(self, now: datetime) -> None:
        window_start = now - timedelta(hours=1)
        while self.accepted_at and self.accepted_at[0] <= window_start:
            self.accepted_at.popleft()

    def reoptimization_count(self, now: datetime) -> int:
        self.prune_rate_window(now)
        return len(self.accepted_at)

    def in_cooldown(self, now: datetime) -> bool:
        return now - self.last_reoptimization < timedelta(minutes=settings.reoptimization_cooldown_minutes)

    def rate_limited(self, now: datetime) -> bool:
        return self.reoptimization_count(now) >= settings.max_reoptimizations_per_hour

    def pending_waypoints(self) -> list[RouteWaypoint]:
        return [wp for wp in self.current_route.waypoints if wp.id not in self.completed_waypoint_ids]

    def pending_pickups(self) -> list[RouteWaypoint]:
        return [wp for wp in self.current_route.pickup_waypoints if wp.id not in self.completed_waypoint_ids]

    def accept(self, route: OptimizedRoute, now: datetime) -> None:
        self.current_route = route
        self.last_reoptimization = now
        self.accepted_at.append(now)
        # waypoint ids are regenerated with new sequence numbers
        self.completed_waypoint_ids.clear()

    def complete_waypoint(self, waypoint_id: str, order_id: Optional[str] = None) -> Optional[str]:
        """Mark a waypoint done, by id or else the next pending stop of ``order_id``."""

        known = {wp.id for wp in self.current_route.waypoints}
        if waypoint_id in known:
            self.completed_waypoint_ids.add(waypoint_id)
            return waypoint_id
        if order_id is not None:
            for waypoint in sorted(self.pending_waypoints(), key=lambda wp: wp.sequence):
                if waypoint.order_id == order_id:
                    self.completed_waypoint_ids.add(waypoint.id)
                    return waypoint.id
        return None
