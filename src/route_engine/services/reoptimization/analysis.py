"""Event impact analysis deciding whether a route is worth re-solving."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from typing import Sequence

from ...config import settings
from ...models.domain import Coordinate, TrafficCondition
from ..geospatial import distance_km
from ..routing.models import RouteWaypoint
from .models import (
    CustomerRequest,
    PreparationDelay,
    ReoptimizationAnalysis,
    ReoptimizationPriority,
    RouteEvent,
    RouteEventType,
    RouteReoptimizationState,
    TrafficIncident,
)


def route_impact(incident_location: Coordinate, waypoints: Sequence[RouteWaypoint]) -> float:
    """Closeness of the incident to the route: 1 on top of a waypoint, 0 beyond the impact radius."""

    radius = settings.incident_impact_radius_km
    impact = 0.0
    for waypoint in waypoints:
        closeness = min(max(radius - distance_km(incident_location, waypoint.location), 0.0), radius) / radius
        impact = max(impact, closeness)
    return impact


def analyze_traffic_incident(incident: TrafficIncident, state: RouteReoptimizationState) -> ReoptimizationAnalysis:
    impact = route_impact(incident.location, state.pending_waypoints())
    delay = incident.estimated_delay_minutes
    metadata = {
        "incident_severity": incident.severity.value,
        "estimated_delay_minutes": delay,
        "route_impact_score": impact,
    }

    if incident.severity is TrafficCondition.SEVERE and delay > 20 and impact > 0.7:
        priority, confidence, share = ReoptimizationPriority.HIGH, 0.9, 0.6
    elif incident.severity is TrafficCondition.HEAVY and delay > 15 and impact > 0.5:
        priority, confidence, share = ReoptimizationPriority.MEDIUM, 0.7, 0.4
    elif delay > 30 and impact > 0.3:
        priority, confidence, share = ReoptimizationPriority.MEDIUM, 0.6, 0.3
    else:
        return ReoptimizationAnalysis.declined("Traffic incident impact insufficient for reoptimization", **metadata)

    return ReoptimizationAnalysis(
        is_recommended=True,
        reason=(
            f"Traffic incident ({incident.severity.value}) with {delay:g}min delay affects route "
            f"({impact * 100:.1f}% impact)"
        ),
        confidence=confidence,
        estimated_time_saving=timedelta(minutes=round(delay * share)),
        priority=priority,
        metadata=metadata,
    )


def analyze_preparation_delay(change: PreparationDelay, state: RouteReoptimizationState) -> ReoptimizationAnalysis:
    load_change = change.load_change
    magnitude = abs(load_change)
    pickups = state.pending_pickups()
    if change.vendor_id is not None:
        pickups = [wp for wp in pickups if wp.vendor_id == change.vendor_id]
    metadata = {
        "vendor_id": change.vendor_id,
        "load_change": load_change,
        "new_kitchen_load": change.new_load,
        "affected_orders": len(pickups),
    }

    if magnitude < settings.kitchen_load_change_threshold:
        return ReoptimizationAnalysis.declined("Kitchen load change insufficient for reoptimization", **metadata)
    if not pickups:
        return ReoptimizationAnalysis.declined("Preparation delay does not affect current route", **metadata)

    if magnitude >= 0.5:
        priority = ReoptimizationPriority.HIGH
    elif magnitude >= 0.3:
        priority = ReoptimizationPriority.MEDIUM
    else:
        priority = ReoptimizationPriority.LOW

    if load_change > 0:
        confidence, minutes_per_unit = 0.6, 20
    else:
        confidence, minutes_per_unit = 0.5, 15

    return ReoptimizationAnalysis(
        is_recommended=True,
        reason=f"Kitchen load change ({load_change:+.2f}) affects {len(pickups)} orders",
        confidence=confidence,
        estimated_time_saving=timedelta(minutes=round(magnitude * minutes_per_unit)),
        priority=priority,
        metadata=metadata,
    )


def analyze_order_ready(order_id: str, state: RouteReoptimizationState) -> ReoptimizationAnalysis:
    pickup = next((wp for wp in state.pending_pickups() if wp.order_id == order_id), None)
    if pickup is None:
        return ReoptimizationAnalysis.declined("Ready order not in current route", order_id=order_id)
    return ReoptimizationAnalysis(
        is_recommended=True,
        reason="Order ready early - resequencing may optimize pickup timing",
        confidence=0.7,
        estimated_time_saving=timedelta(minutes=8),
        priority=ReoptimizationPriority.MEDIUM,
        metadata={"order_id": order_id, "waypoint_sequence": pickup.sequence},
    )


def analyze_customer_request(request: CustomerRequest, state: RouteReoptimizationState) -> ReoptimizationAnalysis:
    analysis = analyze_order_ready(request.order_id, state)
    metadata = {**analysis.metadata, "request_type": request.request_type.value}
    if not analysis.is_recommended:
        return ReoptimizationAnalysis.declined("Customer request targets an order not pending in the route", **metadata)
    return replace(
        analysis,
        reason=f"Customer requested {request.request_type.value.replace('_', ' ')}",
        priority=ReoptimizationPriority.HIGH,
        metadata=metadata,
    )


def analyze_event(event: RouteEvent, state: RouteReoptimizationState) -> ReoptimizationAnalysis:
    payload = event.payload
    match event.event_type:
        case RouteEventType.TRAFFIC_INCIDENT:
            return analyze_traffic_incident(payload, state)
        case RouteEventType.PREPARATION_DELAY:
            return analyze_preparation_delay(payload, state)
        case RouteEventType.ORDER_READY:
            return analyze_order_ready(payload.order_id, state)
        case RouteEventType.CUSTOMER_REQUEST:
            return analyze_customer_request(payload, state)
        case RouteEventType.DRIVER_LOCATION_UPDATE:
            return ReoptimizationAnalysis.declined("Location updates processed in periodic monitoring")
        case _:
            return ReoptimizationAnalysis.declined("Event type not configured for reoptimization")
