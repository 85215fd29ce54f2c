"""Supabase persistence for monitored routes, driver positions and notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..db.supabase import get_supabase_client
from ..models.domain import Coordinate, Order
from ..services.outputs.route_formatter import waypoints_to_records
from ..services.reoptimization.models import DriverNotification
from ..services.routing.models import OptimizedRoute

logger = logging.getLogger(__name__)


def _coordinate(latitude: Any, longitude: Any) -> Optional[Coordinate]:
    if latitude is None or longitude is None:
        return None
    return Coordinate(latitude=float(latitude), longitude=float(longitude))


def order_from_record(record: dict[str, Any]) -> Optional[Order]:
    """Build an Order from an ``orders`` row. Rows without a delivery coordinate are skipped."""

    delivery = _coordinate(record.get("delivery_latitude"), record.get("delivery_longitude"))
    if delivery is None:
        logger.warning("Order %s has no delivery coordinate; skipping", record.get("id"))
        return None
    items = record.get("items") or []
    return Order(
        order_id=str(record["id"]),
        delivery_location=delivery,
        vendor_id=record.get("vendor_id"),
        pickup_location=_coordinate(record.get("vendor_latitude"), record.get("vendor_longitude")),
        delivery_address=record.get("delivery_address"),
        item_count=int(record.get("item_count") or len(items) or 1),
    )


class SupabaseRouteStore:
    """Reads and writes the tables shared with the driver app.

    Every method degrades to a neutral value when Supabase is not configured or a call
    fails, so callers treat the store as best-effort.
    """

    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def client(self):
        return self._client if self._client is not None else get_supabase_client()

    def get_remaining_orders(self, route_id: str) -> list[Order]:
        supabase = self.client
        if not supabase:
            return []
        try:
            response = (
                supabase.table("route_waypoints")
                .select("order_id, orders!inner(*)")
                .eq("route_id", route_id)
                .eq("type", "pickup")
                .execute()
            )
        except Exception as e:
            logger.error("Failed to load remaining orders for route %s: %s", route_id, e)
            return []

        orders: list[Order] = []
        for row in response.data or []:
            record = row.get("orders")
            if not record:
                continue
            order = order_from_record(record)
            if order is not None:
                orders.append(order)
        return orders

    def get_driver_location(self, driver_id: str) -> Optional[Coordinate]:
        supabase = self.client
        if not supabase:
            return None
        try:
            response = (
                supabase.table("driver_locations")
                .select("latitude, longitude")
                .eq("driver_id", driver_id)
                .order("updated_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to load location for driver %s: %s", driver_id, e)
            return None
        rows = response.data or []
        if not rows:
            return None
        return _coordinate(rows[0].get("latitude"), rows[0].get("longitude"))

    def save_route(self, route_id: str, route: OptimizedRoute) -> bool:
        """Replace the stored waypoints of ``route_id``, then update the route row.

        The previous waypoint rows are read first and written back when the insert of the
        new ones fails, so a failed save leaves the stored route as it was.
        """

        supabase = self.client
        if not supabase:
            logger.info("Supabase not configured - route %s kept in memory only", route_id)
            return True
        try:
            previous = supabase.table("route_waypoints").select("*").eq("route_id", route_id).execute().data or []
            supabase.table("route_waypoints").delete().eq("route_id", route_id).execute()
        except Exception as e:
            logger.error("Failed to persist route %s: %s", route_id, e)
            return False
        try:
            supabase.table("route_waypoints").insert(waypoints_to_records(route, route_id)).execute()
        except Exception as e:
            logger.error("Failed to insert waypoints for route %s: %s", route_id, e)
            self._restore_waypoints(route_id, previous)
            return False
        try:
            supabase.table("optimized_routes").update(
                {
                    "total_distance_km": route.total_distance_km,
                    "total_duration_minutes": int(route.total_duration.total_seconds() // 60),
                    "optimization_score": route.optimization_score,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                    "metadata": route.metadata,
                }
            ).eq("id", route_id).execute()
        except Exception as e:
            # waypoints already reflect the new route; only the summary row is stale
            logger.warning("Failed to update summary of route %s: %s", route_id, e)
        logger.info("Route %s updated in database with %d waypoints", route_id, len(route.waypoints))
        return True

    def _restore_waypoints(self, route_id: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        try:
            self.client.table("route_waypoints").insert(rows).execute()
        except Exception as e:
            logger.error("Failed to restore %d previous waypoints of route %s: %s", len(rows), route_id, e)
            return
        logger.info("Restored %d previous waypoints of route %s", len(rows), route_id)

    def save_notification(self, notification: DriverNotification) -> bool:
        supabase = self.client
        if not supabase:
            return False
        try:
            supabase.table("driver_notifications").insert(
                {
                    "id": notification.id,
                    "driver_id": notification.driver_id,
                    "route_id": notification.route_id,
                    "type": notification.notification_type,
                    "title": notification.title,
                    "message": notification.message,
                    "timestamp": notification.timestamp.isoformat(),
                    "is_urgent": notification.is_urgent,
                    "data": notification.data,
                    "is_read": False,
                }
            ).execute()
        except Exception as e:
            logger.warning("Failed to store notification %s: %s", notification.id, e)
            return False
        return True

    def current_location(self, driver_id: str) -> Optional[Coordinate]:
        return self.get_driver_location(driver_id)
