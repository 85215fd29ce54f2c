"""Serializers for optimized routes."""

from __future__ import annotations

import csv
import io

from ..routing.models import OptimizedRoute, RouteWaypoint


def _minutes(delta) -> float:
    return round(delta.total_seconds() / 60.0, 2)


def waypoint_to_json(waypoint: RouteWaypoint) -> dict:
    return {
        "id": waypoint.id,
        "order_id": waypoint.order_id,
        "type": waypoint.role.value,
        "latitude": waypoint.location.latitude,
        "longitude": waypoint.location.longitude,
        "sequence": waypoint.sequence,
        "estimated_arrival": waypoint.estimated_arrival.isoformat(),
        "estimated_duration_min": _minutes(waypoint.estimated_duration),
        "distance_from_previous_km": round(waypoint.distance_from_previous_km, 3),
        "heading_degrees": round(waypoint.heading_degrees, 1),
        "vendor_id": waypoint.vendor_id,
        "address": waypoint.address,
    }


def route_to_json(route: OptimizedRoute) -> dict:
    return {
        "id": route.id,
        "batch_id": route.batch_id,
        "total_distance_km": round(route.total_distance_km, 3),
        "total_duration_min": _minutes(route.total_duration),
        "duration_in_traffic_min": _minutes(route.duration_in_traffic),
        "optimization_score": round(route.optimization_score, 2),
        "criteria": {
            "distance_weight": route.criteria.distance_weight,
            "preparation_time_weight": route.criteria.preparation_time_weight,
            "traffic_weight": route.criteria.traffic_weight,
            "delivery_window_weight": route.criteria.delivery_window_weight,
        },
        "calculated_at": route.calculated_at.isoformat(),
        "overall_traffic": route.overall_traffic.value,
        "metadata": route.metadata,
        "waypoints": [waypoint_to_json(waypoint) for waypoint in route.waypoints],
    }


def waypoints_to_records(route: OptimizedRoute, route_id: str | None = None) -> list[dict]:
    """Rows for the ``route_waypoints`` table."""

    target = route_id or route.id
    return [
        {
            "id": waypoint.id,
            "route_id": target,
            "order_id": waypoint.order_id,
            "type": waypoint.role.value,
            "latitude": waypoint.location.latitude,
            "longitude": waypoint.location.longitude,
            "sequence": waypoint.sequence,
            "estimated_arrival": waypoint.estimated_arrival.isoformat(),
            "estimated_duration": int(waypoint.estimated_duration.total_seconds()),
            "distance_from_previous": waypoint.distance_from_previous_km,
            "address": waypoint.address,
        }
        for waypoint in route.waypoints
    ]


def route_to_csv(route: OptimizedRoute) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route_id",
        "sequence",
        "waypoint_id",
        "order_id",
        "type",
        "latitude",
        "longitude",
        "estimated_arrival",
        "dwell_min",
        "distance_from_prev_km",
        "total_distance_km",
        "total_duration_min",
        "optimization_score",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for waypoint in route.waypoints:
        writer.writerow(
            {
                "route_id": route.id,
                "sequence": waypoint.sequence,
                "waypoint_id": waypoint.id,
                "order_id": waypoint.order_id,
                "type": waypoint.role.value,
                "latitude": waypoint.location.latitude,
                "longitude": waypoint.location.longitude,
                "estimated_arrival": waypoint.estimated_arrival.isoformat(),
                "dwell_min": _minutes(waypoint.estimated_duration),
                "distance_from_prev_km": round(waypoint.distance_from_previous_km, 3),
                "total_distance_km": round(route.total_distance_km, 3),
                "total_duration_min": _minutes(route.total_duration),
                "optimization_score": round(route.optimization_score, 2),
            }
        )
    return buffer.getvalue()
