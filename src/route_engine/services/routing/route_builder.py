"""Expand a pickup sequence into a timed waypoint list."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence

from ...config import settings
from ...models.domain import Order, StopRole, TrafficCondition
from ..geospatial import bearing_between
from .distance_matrix import DistanceMatrix
from .models import OptimizationCriteria, OptimizedRoute, RouteWaypoint


def leg_minutes(distance_km: float) -> int:
    return round(distance_km / settings.average_speed_kmh * 60)


def build_route(
    *,
    sequence: Sequence[int],
    orders: Sequence[Order],
    distance_matrix: DistanceMatrix,
    criteria: OptimizationCriteria,
    score: float,
    overall_traffic: TrafficCondition = TrafficCondition.UNKNOWN,
    departure_time: datetime | None = None,
    route_id: str | None = None,
    metadata: dict | None = None,
    onboard_orders: Sequence[Order] = (),
) -> OptimizedRoute:
    """Walk ``sequence`` emitting all pickups, then all deliveries in the same order.

    Orders in ``onboard_orders`` were already picked up; they get a delivery leg only,
    placed after the pickups and before the deliveries of ``sequence``. The distance
    matrix must have been built with the same ``onboard_orders``.

    ``score`` is the scoring-model result in [0, 1]; the route carries it as a percentage.
    """

    if not orders:
        raise ValueError("Cannot build a route without orders.")
    if sorted(sequence) != list(range(len(orders))):
        raise ValueError(f"Sequence {list(sequence)} is not a permutation of {len(orders)} orders.")
    if distance_matrix.onboard_count != len(onboard_orders):
        raise ValueError("Distance matrix was not built for the given on-board orders.")

    departure = departure_time or datetime.now(timezone.utc)
    legs = [(orders[idx], StopRole.PICKUP, distance_matrix.pickup_index(idx)) for idx in sequence]
    legs += [
        (order, StopRole.DELIVERY, distance_matrix.onboard_index(position))
        for position, order in enumerate(onboard_orders)
    ]
    legs += [(orders[idx], StopRole.DELIVERY, distance_matrix.delivery_index(idx)) for idx in sequence]

    waypoints: list[RouteWaypoint] = []
    elapsed = 0
    total_distance = 0.0
    previous = 0
    for position, (order, role, node) in enumerate(legs, start=1):
        leg_km = distance_matrix.between(previous, node)
        elapsed += leg_minutes(leg_km)
        dwell = settings.pickup_dwell_minutes if role is StopRole.PICKUP else settings.delivery_dwell_minutes
        waypoints.append(
            RouteWaypoint(
                id=f"{role.value}_{order.order_id}_{position}",
                order_id=order.order_id,
                role=role,
                location=distance_matrix.points[node],
                sequence=position,
                estimated_arrival=departure + timedelta(minutes=elapsed),
                estimated_duration=timedelta(minutes=dwell),
                distance_from_previous_km=leg_km,
                heading_degrees=bearing_between(distance_matrix.points[previous], distance_matrix.points[node]),
                vendor_id=order.vendor_id,
                address=order.delivery_address if role is StopRole.DELIVERY else None,
            )
        )
        elapsed += dwell
        total_distance += leg_km
        previous = node

    return OptimizedRoute(
        id=route_id or f"route_{uuid.uuid4().hex[:12]}",
        batch_id=f"batch_{orders[sequence[0]].order_id}",
        waypoints=tuple(waypoints),
        total_distance_km=total_distance,
        total_duration=timedelta(minutes=elapsed),
        duration_in_traffic=timedelta(minutes=round(elapsed * settings.traffic_duration_factor)),
        optimization_score=score * 100,
        criteria=criteria,
        calculated_at=departure,
        overall_traffic=overall_traffic,
        metadata=metadata or {},
    )
