"""Adapters from raw change-feed payloads to route events, and a polling location feed."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from ...config import settings
from ...models.domain import Coordinate, TrafficCondition
from .models import (
    CustomerRequest,
    CustomerRequestType,
    DriverLocationUpdate,
    OrderReady,
    PreparationDelay,
    RouteEvent,
    RouteEventType,
    RouteId,
    TrafficIncident,
    WaypointCompleted,
)

logger = logging.getLogger(__name__)

DEFAULT_KITCHEN_LOAD = 0.5


def _event(route_id: str, event_type: RouteEventType, payload, timestamp: datetime | None) -> RouteEvent:
    return RouteEvent(
        id=f"{event_type.value}_{uuid.uuid4().hex[:12]}",
        route_id=RouteId(route_id),
        event_type=event_type,
        payload=payload,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


def _coordinate(record: Mapping[str, Any]) -> Coordinate:
    return Coordinate(latitude=float(record["latitude"]), longitude=float(record["longitude"]))


def order_status_event(
    route_id: str,
    new_record: Mapping[str, Any],
    old_record: Mapping[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> Optional[RouteEvent]:
    """Map an ``orders`` row change. Returns ``None`` when the status did not change."""

    order_id = str(new_record["id"])
    new_status = new_record.get("status")
    old_status = (old_record or {}).get("status")
    if new_status == old_status:
        return None

    if new_status == "ready":
        return _event(route_id, RouteEventType.ORDER_READY, OrderReady(order_id=order_id), timestamp)
    if new_status == "preparing":
        payload = PreparationDelay(
            vendor_id=new_record.get("vendor_id"),
            previous_load=float((old_record or {}).get("kitchen_load", DEFAULT_KITCHEN_LOAD)),
            new_load=float(new_record.get("kitchen_load", DEFAULT_KITCHEN_LOAD)),
            order_id=order_id,
        )
        return _event(route_id, RouteEventType.PREPARATION_DELAY, payload, timestamp)
    payload = WaypointCompleted(
        waypoint_id=str(new_record.get("waypoint_id") or ""),
        order_id=order_id,
    )
    return _event(route_id, RouteEventType.WAYPOINT_COMPLETED, payload, timestamp)


def driver_location_event(
    route_id: str,
    driver_id: str,
    record: Mapping[str, Any],
    timestamp: datetime | None = None,
) -> RouteEvent:
    payload = DriverLocationUpdate(driver_id=driver_id, location=_coordinate(record))
    return _event(route_id, RouteEventType.DRIVER_LOCATION_UPDATE, payload, timestamp)


def traffic_incident_event(route_id: str, record: Mapping[str, Any], timestamp: datetime | None = None) -> RouteEvent:
    try:
        severity = TrafficCondition(record.get("severity", TrafficCondition.MODERATE.value))
    except ValueError:
        severity = TrafficCondition.UNKNOWN
    payload = TrafficIncident(
        location=_coordinate(record),
        severity=severity,
        estimated_delay_minutes=float(record.get("estimated_delay_minutes", 0)),
        description=record.get("description"),
    )
    return _event(route_id, RouteEventType.TRAFFIC_INCIDENT, payload, timestamp)


def kitchen_status_event(
    route_id: str,
    new_record: Mapping[str, Any],
    old_record: Mapping[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> Optional[RouteEvent]:
    """Map a ``kitchen_status`` row change. Small load movements are ignored."""

    previous_load = float((old_record or {}).get("kitchen_load", DEFAULT_KITCHEN_LOAD))
    new_load = float(new_record.get("kitchen_load", DEFAULT_KITCHEN_LOAD))
    if abs(new_load - previous_load) < settings.kitchen_load_change_threshold:
        return None
    payload = PreparationDelay(vendor_id=new_record.get("vendor_id"), previous_load=previous_load, new_load=new_load)
    return _event(route_id, RouteEventType.PREPARATION_DELAY, payload, timestamp)


def customer_request_event(
    route_id: str,
    record: Mapping[str, Any],
    timestamp: datetime | None = None,
) -> Optional[RouteEvent]:
    try:
        request_type = CustomerRequestType(record.get("request_type"))
    except ValueError:
        logger.debug("Ignoring customer request type %r", record.get("request_type"))
        return None
    payload = CustomerRequest(
        order_id=str(record["order_id"]),
        request_type=request_type,
        details=record.get("details"),
    )
    return _event(route_id, RouteEventType.CUSTOMER_REQUEST, payload, timestamp)


CHANGE_SOURCES = ("orders", "driver_locations", "traffic_incidents", "kitchen_status", "customer_requests")


def change_event(
    source: str,
    route_id: str,
    record: Mapping[str, Any],
    old_record: Mapping[str, Any] | None = None,
    *,
    driver_id: str | None = None,
    timestamp: datetime | None = None,
) -> Optional[RouteEvent]:
    """Map one change-feed row from ``source`` to a route event.

    Returns ``None`` when the change carries nothing to act on. Raises ``ValueError`` for an
    unknown source or a row missing the fields its source needs.
    """

    try:
        match source:
            case "orders":
                return order_status_event(route_id, record, old_record, timestamp)
            case "driver_locations":
                if driver_id is None:
                    raise ValueError("driver_locations changes require a driver id")
                return driver_location_event(route_id, driver_id, record, timestamp)
            case "traffic_incidents":
                return traffic_incident_event(route_id, record, timestamp)
            case "kitchen_status":
                return kitchen_status_event(route_id, record, old_record, timestamp)
            case "customer_requests":
                return customer_request_event(route_id, record, timestamp)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Invalid {source} change record: missing or malformed {exc}") from exc
    raise ValueError(f"Unknown change source '{source}'; expected one of {', '.join(CHANGE_SOURCES)}")


class LocationProvider(Protocol):
    def current_location(self, driver_id: str) -> Optional[Coordinate]:
        ...


class LocationPoller:
    """Polls a location provider and hands location events to ``sink``."""

    def __init__(
        self,
        provider: LocationProvider,
        sink: Callable[[RouteEvent], bool],
        *,
        interval: float | None = None,
    ) -> None:
        self.provider = provider
        self.sink = sink
        self.interval = interval or settings.location_poll_seconds

    async def poll_once(self, route_id: str, driver_id: str) -> Optional[RouteEvent]:
        try:
            location = await asyncio.to_thread(self.provider.current_location, driver_id)
        except Exception:
            logger.exception("Location lookup for driver %s failed", driver_id)
            return None
        if location is None:
            return None
        event = _event(
            route_id,
            RouteEventType.DRIVER_LOCATION_UPDATE,
            DriverLocationUpdate(driver_id=driver_id, location=location),
            None,
        )
        if not self.sink(event):
            logger.warning("Location event for route %s was not accepted", route_id)
        return event

    async def run(self, route_id: str, driver_id: str) -> None:
        while True:
            await self.poll_once(route_id, driver_id)
            await asyncio.sleep(self.interval)
