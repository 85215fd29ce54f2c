from .analysis import analyze_event, route_impact
from .controller import ReoptimizationController, RouteStore, calculate_improvement
from .models import (
    CustomerRequest,
    CustomerRequestType,
    DriverLocationUpdate,
    DriverNotification,
    OrderReady,
    PreparationDelay,
    ReoptimizationAnalysis,
    ReoptimizationEvent,
    ReoptimizationOutcome,
    ReoptimizationPriority,
    RouteEvent,
    RouteEventType,
    RouteId,
    RouteNotMonitoredError,
    RouteReoptimizationState,
    TrafficIncident,
    WaypointCompleted,
)
from .streams import Broadcast

__all__ = [
    "Broadcast",
    "CustomerRequest",
    "CustomerRequestType",
    "DriverLocationUpdate",
    "DriverNotification",
    "OrderReady",
    "PreparationDelay",
    "ReoptimizationAnalysis",
    "ReoptimizationController",
    "ReoptimizationEvent",
    "ReoptimizationOutcome",
    "ReoptimizationPriority",
    "RouteEvent",
    "RouteEventType",
    "RouteId",
    "RouteNotMonitoredError",
    "RouteReoptimizationState",
    "RouteStore",
    "TrafficIncident",
    "WaypointCompleted",
    "analyze_event",
    "calculate_improvement",
    "route_impact",
]
