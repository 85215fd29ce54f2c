import csv
import io
from datetime import datetime, timezone

from route_engine.models.domain import Coordinate, Order, TrafficCondition
from route_engine.schemas.routing import OptimizedRouteModel
from route_engine.services.outputs.route_formatter import route_to_csv, route_to_json, waypoints_to_records
from route_engine.services.routing.distance_matrix import build_distance_matrix
from route_engine.services.routing.models import OptimizationCriteria
from route_engine.services.routing.route_builder import build_route

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _route():
    orders = [
        Order(order_id="o1", pickup_location=Coordinate(3.15, 101.70), delivery_location=Coordinate(3.14, 101.69)),
        Order(order_id="o2", delivery_location=Coordinate(3.12, 101.66), delivery_address="Lot 9"),
    ]
    return build_route(
        sequence=[1, 0],
        orders=orders,
        distance_matrix=build_distance_matrix(orders, Coordinate(3.13, 101.68)),
        criteria=OptimizationCriteria.time_focused(),
        score=0.6543,
        overall_traffic=TrafficCondition.MODERATE,
        departure_time=NOW,
        route_id="route_fmt",
        metadata={"algorithm": "exact"},
    )


def test_route_json_layout():
    body = route_to_json(_route())

    assert body["id"] == "route_fmt"
    assert body["optimization_score"] == 65.43
    assert body["overall_traffic"] == "moderate"
    assert body["criteria"]["preparation_time_weight"] == 0.4
    assert body["calculated_at"] == NOW.isoformat()
    first = body["waypoints"][0]
    assert first["id"] == "pickup_o2_1"
    assert first["type"] == "pickup"
    assert first["estimated_duration_min"] == 5.0
    assert body["waypoints"][2]["address"] == "Lot 9"


def test_json_survives_the_response_schema():
    route = _route()
    restored = OptimizedRouteModel.from_domain(route).to_domain()

    assert [wp.id for wp in restored.waypoints] == [wp.id for wp in route.waypoints]
    assert restored.criteria == route.criteria
    assert restored.total_duration == route.total_duration
    assert restored.overall_traffic is TrafficCondition.MODERATE


def test_waypoint_records_target_route():
    records = waypoints_to_records(_route(), "route_other")
    assert {record["route_id"] for record in records} == {"route_other"}
    assert records[0]["estimated_duration"] == 300


def test_csv_export():
    rows = list(csv.DictReader(io.StringIO(route_to_csv(_route()))))

    assert len(rows) == 4
    assert [row["type"] for row in rows] == ["pickup", "pickup", "delivery", "delivery"]
    assert rows[0]["order_id"] == "o2"
    assert rows[-1]["dwell_min"] == "3.0"
