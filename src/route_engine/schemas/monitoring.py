"""Reoptimization monitoring schemas."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.domain import TrafficCondition
from ..services.reoptimization.models import (
    CustomerRequest,
    CustomerRequestType,
    DriverLocationUpdate,
    OrderReady,
    PreparationDelay,
    RouteEvent,
    RouteEventType,
    RouteId,
    RouteReoptimizationState,
    TrafficIncident,
    WaypointCompleted,
)
from .routing import CoordinateModel, OptimizedRouteModel, UtcDatetime


class StartMonitoringRequest(BaseModel):
    driver_id: str
    route_id: str
    current_route: OptimizedRouteModel


class RouteEventRequest(BaseModel):
    """One event for a monitored route. Only the fields relevant to ``event_type`` are read."""

    route_id: str
    event_type: RouteEventType
    id: Optional[str] = Field(default=None, description="Event id; generated when omitted.")
    timestamp: Optional[UtcDatetime] = None

    location: Optional[CoordinateModel] = None
    severity: Optional[TrafficCondition] = None
    estimated_delay_minutes: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None

    vendor_id: Optional[str] = None
    previous_load: Optional[float] = Field(default=None, ge=0, le=1)
    new_load: Optional[float] = Field(default=None, ge=0, le=1)

    order_id: Optional[str] = None
    request_type: Optional[CustomerRequestType] = None
    driver_id: Optional[str] = None
    waypoint_id: Optional[str] = None

    def _require(self, *names: str) -> None:
        missing = [name for name in names if getattr(self, name) is None]
        if missing:
            raise ValueError(f"{self.event_type.value} events require: {', '.join(missing)}")

    def to_domain(self) -> RouteEvent:
        match self.event_type:
            case RouteEventType.TRAFFIC_INCIDENT:
                self._require("location", "severity", "estimated_delay_minutes")
                payload = TrafficIncident(
                    location=self.location.to_domain(),
                    severity=self.severity,
                    estimated_delay_minutes=self.estimated_delay_minutes,
                    description=self.description,
                )
            case RouteEventType.PREPARATION_DELAY:
                self._require("previous_load", "new_load")
                payload = PreparationDelay(
                    vendor_id=self.vendor_id,
                    previous_load=self.previous_load,
                    new_load=self.new_load,
                    order_id=self.order_id,
                )
            case RouteEventType.ORDER_READY:
                self._require("order_id")
                payload = OrderReady(order_id=self.order_id)
            case RouteEventType.CUSTOMER_REQUEST:
                self._require("order_id", "request_type")
                payload = CustomerRequest(order_id=self.order_id, request_type=self.request_type, details=self.description)
            case RouteEventType.DRIVER_LOCATION_UPDATE:
                self._require("location", "driver_id")
                payload = DriverLocationUpdate(driver_id=self.driver_id, location=self.location.to_domain())
            case RouteEventType.WAYPOINT_COMPLETED:
                if self.waypoint_id is None and self.order_id is None:
                    raise ValueError("waypoint_completed events require a waypoint_id or order_id")
                payload = WaypointCompleted(waypoint_id=self.waypoint_id or "", order_id=self.order_id)
        return RouteEvent(
            id=self.id or f"{self.event_type.value}_{uuid.uuid4().hex[:12]}",
            route_id=RouteId(self.route_id),
            event_type=self.event_type,
            payload=payload,
            timestamp=self.timestamp or datetime.now(timezone.utc),
        )


class ChangeFeedRequest(BaseModel):
    """A raw row change from one of the shared tables, mapped to a route event server-side."""

    source: Literal["orders", "driver_locations", "traffic_incidents", "kitchen_status", "customer_requests"]
    record: Dict[str, Any]
    old_record: Optional[Dict[str, Any]] = None


class EventAcceptedResponse(BaseModel):
    event_id: Optional[str] = None
    route_id: str
    queued: bool = True


class MonitoringStateModel(BaseModel):
    route_id: str
    driver_id: str
    is_monitoring: bool
    last_reoptimization: datetime
    reoptimization_count: int
    last_checked_at: Optional[datetime] = None
    completed_waypoint_ids: List[str]
    recent_event_ids: List[str]
    last_known_location: Optional[CoordinateModel] = None
    current_route: OptimizedRouteModel

    @classmethod
    def from_state(cls, state: RouteReoptimizationState, now: datetime) -> "MonitoringStateModel":
        location = state.last_known_location
        return cls(
            route_id=state.route_id,
            driver_id=state.driver_id,
            is_monitoring=state.is_monitoring,
            last_reoptimization=state.last_reoptimization,
            reoptimization_count=state.reoptimization_count(now),
            last_checked_at=state.last_checked_at,
            completed_waypoint_ids=sorted(state.completed_waypoint_ids),
            recent_event_ids=list(state.recent_event_ids),
            last_known_location=(
                CoordinateModel(latitude=location.latitude, longitude=location.longitude) if location else None
            ),
            current_route=OptimizedRouteModel.from_domain(state.current_route),
        )
