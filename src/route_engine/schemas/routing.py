"""Route optimization request/response schemas."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field

from ..models.domain import Coordinate, Order, PreparationWindow, StopRole, TrafficCondition
from ..services.outputs.route_formatter import route_to_json
from ..services.routing.models import CRITERIA_PRESETS, OptimizationCriteria, OptimizedRoute, RouteWaypoint


def _assume_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Timestamps without an offset are taken as UTC so they compare with the engine clock.
UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class CoordinateModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class OrderModel(BaseModel):
    order_id: str
    delivery_location: CoordinateModel
    pickup_location: Optional[CoordinateModel] = Field(
        default=None,
        description="Vendor coordinate. When missing the delivery coordinate is used for the pickup.",
    )
    vendor_id: Optional[str] = None
    delivery_address: Optional[str] = None
    item_count: int = Field(default=1, ge=0)

    def to_domain(self) -> Order:
        return Order(
            order_id=self.order_id,
            delivery_location=self.delivery_location.to_domain(),
            vendor_id=self.vendor_id,
            pickup_location=self.pickup_location.to_domain() if self.pickup_location else None,
            delivery_address=self.delivery_address,
            item_count=self.item_count,
        )


class PreparationWindowModel(BaseModel):
    estimated_completion: UtcDatetime
    confidence: float = Field(default=0.8, ge=0, le=1)
    estimated_start: Optional[UtcDatetime] = None
    vendor_id: Optional[str] = None

    def to_domain(self, order_id: str) -> PreparationWindow:
        return PreparationWindow(
            order_id=order_id,
            estimated_completion=self.estimated_completion,
            confidence=self.confidence,
            vendor_id=self.vendor_id,
            estimated_start=self.estimated_start,
        )


class CriteriaModel(BaseModel):
    """Either a preset name or all four weights."""

    preset: Optional[Literal["balanced", "distance_focused", "time_focused"]] = None
    distance_weight: Optional[float] = Field(None, ge=0)
    preparation_time_weight: Optional[float] = Field(None, ge=0)
    traffic_weight: Optional[float] = Field(None, ge=0)
    delivery_window_weight: Optional[float] = Field(None, ge=0)

    def to_domain(self) -> OptimizationCriteria:
        weights = (
            self.distance_weight,
            self.preparation_time_weight,
            self.traffic_weight,
            self.delivery_window_weight,
        )
        if self.preset is not None:
            if any(weight is not None for weight in weights):
                raise ValueError("Provide either a criteria preset or explicit weights, not both.")
            return CRITERIA_PRESETS[self.preset]()
        if any(weight is None for weight in weights):
            raise ValueError("All four criteria weights are required when no preset is given.")
        return OptimizationCriteria(*weights)


class OptimizeRouteRequest(BaseModel):
    orders: List[OrderModel] = Field(..., min_length=1)
    driver_location: CoordinateModel
    criteria: Optional[CriteriaModel] = None
    preparation_windows: Optional[Dict[str, PreparationWindowModel]] = Field(
        default=None,
        description="Per-order kitchen predictions keyed by order id. Predicted when omitted.",
    )
    traffic_conditions: Optional[Dict[str, TrafficCondition]] = Field(
        default=None,
        description="Per-order traffic classification keyed by order id. Simulated when omitted.",
    )

    def domain_orders(self) -> list[Order]:
        return [order.to_domain() for order in self.orders]

    def domain_criteria(self) -> Optional[OptimizationCriteria]:
        return self.criteria.to_domain() if self.criteria else None

    def domain_preparation_windows(self) -> Optional[dict[str, PreparationWindow]]:
        if self.preparation_windows is None:
            return None
        return {order_id: window.to_domain(order_id) for order_id, window in self.preparation_windows.items()}


class CriteriaWeightsModel(BaseModel):
    distance_weight: float
    preparation_time_weight: float
    traffic_weight: float
    delivery_window_weight: float


class WaypointModel(BaseModel):
    id: str
    order_id: str
    type: StopRole
    latitude: float
    longitude: float
    sequence: int
    estimated_arrival: UtcDatetime
    estimated_duration_min: float
    distance_from_previous_km: float
    heading_degrees: float = 0.0
    vendor_id: Optional[str] = None
    address: Optional[str] = None

    def to_domain(self) -> RouteWaypoint:
        return RouteWaypoint(
            id=self.id,
            order_id=self.order_id,
            role=self.type,
            location=Coordinate(self.latitude, self.longitude),
            sequence=self.sequence,
            estimated_arrival=self.estimated_arrival,
            estimated_duration=timedelta(minutes=self.estimated_duration_min),
            distance_from_previous_km=self.distance_from_previous_km,
            heading_degrees=self.heading_degrees,
            vendor_id=self.vendor_id,
            address=self.address,
        )


class OptimizedRouteModel(BaseModel):
    id: str
    batch_id: str
    total_distance_km: float
    total_duration_min: float
    duration_in_traffic_min: float
    optimization_score: float = Field(..., ge=0, le=100)
    criteria: CriteriaWeightsModel
    calculated_at: UtcDatetime
    overall_traffic: TrafficCondition = TrafficCondition.UNKNOWN
    metadata: dict = Field(default_factory=dict)
    waypoints: List[WaypointModel]

    @classmethod
    def from_domain(cls, route: OptimizedRoute) -> "OptimizedRouteModel":
        return cls.model_validate(route_to_json(route))

    def to_domain(self) -> OptimizedRoute:
        return OptimizedRoute(
            id=self.id,
            batch_id=self.batch_id,
            waypoints=tuple(waypoint.to_domain() for waypoint in sorted(self.waypoints, key=lambda wp: wp.sequence)),
            total_distance_km=self.total_distance_km,
            total_duration=timedelta(minutes=self.total_duration_min),
            duration_in_traffic=timedelta(minutes=self.duration_in_traffic_min),
            optimization_score=self.optimization_score,
            criteria=OptimizationCriteria(
                self.criteria.distance_weight,
                self.criteria.preparation_time_weight,
                self.criteria.traffic_weight,
                self.criteria.delivery_window_weight,
            ),
            calculated_at=self.calculated_at,
            overall_traffic=self.overall_traffic,
            metadata=dict(self.metadata),
        )
