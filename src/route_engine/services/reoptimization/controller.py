"""Dynamic reoptimization controller.

Each monitored route owns a bounded event queue drained by a single worker task and a
periodic check task. Events for one route are evaluated one at a time under the route's
lock; different routes proceed independently. Solves run in worker threads so the event
loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from ...config import settings
from ...models.domain import Coordinate, Order
from ..routing.engine import RouteOptimizationEngine
from ..routing.models import OptimizedRoute, RouteImprovement, RouteUpdate, onboard_orders, pending_orders
from .analysis import analyze_event
from .feeds import LocationPoller, LocationProvider
from .models import (
    DriverNotification,
    ReoptimizationAnalysis,
    ReoptimizationEvent,
    ReoptimizationOutcome,
    RouteEvent,
    RouteEventType,
    RouteId,
    RouteNotMonitoredError,
    RouteReoptimizationState,
)
from .streams import Broadcast

logger = logging.getLogger(__name__)


class RouteStore(Protocol):
    def get_remaining_orders(self, route_id: str) -> list[Order]:
        ...

    def get_driver_location(self, driver_id: str) -> Optional[Coordinate]:
        ...

    def save_route(self, route_id: str, route: OptimizedRoute) -> bool:
        ...

    def save_notification(self, notification: DriverNotification) -> bool:
        ...


def calculate_improvement(current: OptimizedRoute, candidate: OptimizedRoute) -> RouteImprovement:
    time_saving = current.total_duration - candidate.total_duration
    distance_saving = current.total_distance_km - candidate.total_distance_km
    score_improvement = candidate.optimization_score - current.optimization_score
    is_significant = (
        time_saving > timedelta(minutes=settings.min_time_saving_minutes)
        or distance_saving > settings.min_distance_saving_km
        or score_improvement > settings.min_score_improvement
    )
    return RouteImprovement(
        time_saving=time_saving,
        distance_saving_km=distance_saving,
        score_improvement=score_improvement,
        is_significant=is_significant,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _RouteChannel:
    """Queue plus the tasks draining it for one monitored route."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue
        self.tasks: list[asyncio.Task] = []


class ReoptimizationController:
    def __init__(
        self,
        engine: RouteOptimizationEngine | None = None,
        store: RouteStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        queue_size: int | None = None,
        periodic_interval: float | None = None,
        location_provider: LocationProvider | None = None,
    ) -> None:
        self.clock = clock or _utcnow
        self.engine = engine or RouteOptimizationEngine(clock=self.clock)
        self.store = store
        self.queue_size = queue_size or settings.event_queue_size
        self.periodic_interval = periodic_interval or settings.periodic_check_seconds
        self.location_provider = location_provider
        self.reoptimization_events: Broadcast[ReoptimizationEvent] = Broadcast("reoptimization_events")
        self.driver_notifications: Broadcast[DriverNotification] = Broadcast("driver_notifications")
        self.route_updates: Broadcast[RouteUpdate] = Broadcast("route_updates")
        self._states: dict[RouteId, RouteReoptimizationState] = {}
        self._channels: dict[RouteId, _RouteChannel] = {}

    # -- registry ---------------------------------------------------------

    @property
    def monitored_routes(self) -> list[RouteId]:
        return list(self._states)

    def get_state(self, route_id: str) -> RouteReoptimizationState:
        state = self._states.get(RouteId(route_id))
        if state is None:
            raise RouteNotMonitoredError(route_id)
        return state

    def is_monitoring(self, route_id: str) -> bool:
        return RouteId(route_id) in self._states

    async def initialize_route_monitoring(
        self,
        driver_id: str,
        route_id: str,
        current_route: OptimizedRoute,
    ) -> RouteReoptimizationState:
        key = RouteId(route_id)
        if key in self._states:
            await self.stop_route_monitoring(route_id)

        state = RouteReoptimizationState(
            route_id=key,
            driver_id=driver_id,
            current_route=current_route,
            last_reoptimization=self.clock(),
        )
        channel = _RouteChannel(asyncio.Queue(maxsize=self.queue_size))
        self._states[key] = state
        self._channels[key] = channel
        channel.tasks.append(asyncio.create_task(self._worker(key, channel.queue), name=f"reopt-worker-{route_id}"))
        channel.tasks.append(asyncio.create_task(self._ticker(key), name=f"reopt-tick-{route_id}"))
        if self.location_provider is not None:
            poller = LocationPoller(self.location_provider, self.submit)
            channel.tasks.append(
                asyncio.create_task(poller.run(key, driver_id), name=f"reopt-location-{route_id}")
            )
        logger.info("Started monitoring route %s for driver %s", route_id, driver_id)
        return state

    async def stop_route_monitoring(self, route_id: str) -> bool:
        key = RouteId(route_id)
        state = self._states.pop(key, None)
        channel = self._channels.pop(key, None)
        if state is None:
            return False
        state.is_monitoring = False
        if channel is not None:
            for task in channel.tasks:
                task.cancel()
            await asyncio.gather(*channel.tasks, return_exceptions=True)
        logger.info("Stopped monitoring route %s", route_id)
        return True

    async def shutdown(self) -> None:
        for route_id in list(self._states):
            await self.stop_route_monitoring(route_id)

    # -- ingestion --------------------------------------------------------

    def submit(self, event: RouteEvent) -> bool:
        """Queue ``event`` for its route. Returns ``False`` when the route's queue is full."""

        channel = self._channels.get(event.route_id)
        if channel is None:
            raise RouteNotMonitoredError(event.route_id)
        try:
            channel.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event queue for route %s is full; dropping event %s", event.route_id, event.id)
            return False
        return True

    async def _worker(self, route_id: RouteId, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                await self.process_event(event)
            except RouteNotMonitoredError:
                logger.debug("Route %s stopped before event %s was processed", route_id, event.id)
            except Exception:
                logger.exception("Unexpected error while processing event %s for route %s", event.id, route_id)
            finally:
                queue.task_done()

    async def _ticker(self, route_id: RouteId) -> None:
        while True:
            await asyncio.sleep(self.periodic_interval)
            try:
                await self.periodic_check(route_id)
            except RouteNotMonitoredError:
                return
            except Exception:
                logger.exception("Periodic check failed for route %s", route_id)

    async def periodic_check(self, route_id: str) -> None:
        state = self.get_state(route_id)
        async with state.lock:
            now = self.clock()
            state.last_checked_at = now
            logger.debug(
                "Periodic check for route %s: %d reoptimizations in the last hour, %d pending waypoints",
                route_id,
                state.reoptimization_count(now),
                len(state.pending_waypoints()),
            )

    # -- evaluation -------------------------------------------------------

    async def process_event(self, event: RouteEvent) -> ReoptimizationEvent:
        state = self.get_state(event.route_id)
        async with state.lock:
            return await self._evaluate(state, event)

    async def _evaluate(self, state: RouteReoptimizationState, event: RouteEvent) -> ReoptimizationEvent:
        if event.id in state.recent_event_ids:
            logger.debug("Ignoring duplicate event %s for route %s", event.id, state.route_id)
            return self._record(state, event, ReoptimizationOutcome.DUPLICATE, "Event already processed")

        # bookkeeping events are applied once, whatever the gates decide
        if event.event_type is RouteEventType.DRIVER_LOCATION_UPDATE:
            state.recent_event_ids.append(event.id)
            state.last_known_location = event.payload.location
        elif event.event_type is RouteEventType.WAYPOINT_COMPLETED:
            state.recent_event_ids.append(event.id)
            state.complete_waypoint(event.payload.waypoint_id, event.payload.order_id)

        now = self.clock()
        if state.in_cooldown(now):
            return self._record(
                state,
                event,
                ReoptimizationOutcome.COOLDOWN,
                f"Reoptimization cooldown active ({settings.reoptimization_cooldown_minutes:g}min)",
            )
        if state.rate_limited(now):
            return self._record(
                state,
                event,
                ReoptimizationOutcome.RATE_LIMITED,
                f"Maximum reoptimizations per hour reached ({settings.max_reoptimizations_per_hour})",
            )
        if event.id not in state.recent_event_ids:
            state.recent_event_ids.append(event.id)

        try:
            analysis = analyze_event(event, state)
        except Exception as exc:
            logger.exception("Error analyzing event %s for route %s", event.id, state.route_id)
            return self._record(state, event, ReoptimizationOutcome.FAILED, f"Analysis error: {exc}")

        if not analysis.is_recommended:
            return self._record(state, event, ReoptimizationOutcome.NOT_RECOMMENDED, analysis.reason, analysis)

        logger.info(
            "Reoptimizing route %s (%s priority): %s",
            state.route_id,
            analysis.priority.value,
            analysis.reason,
        )
        return await self._reoptimize(state, event, analysis)

    async def _remaining_orders(self, state: RouteReoptimizationState) -> tuple[list[Order], list[Order]]:
        """Orders still to be picked up and orders on board awaiting delivery.

        Both lists come from the current route and are refreshed from the store where it
        knows the order.
        """

        pending = pending_orders(state.current_route, state.completed_waypoint_ids)
        onboard = onboard_orders(state.current_route, state.completed_waypoint_ids)
        if self.store is None or not pending:
            return pending, onboard
        stored = await asyncio.to_thread(self.store.get_remaining_orders, state.route_id)
        by_id = {order.order_id: order for order in stored}
        return (
            [by_id.get(order.order_id, order) for order in pending],
            [by_id.get(order.order_id, order) for order in onboard],
        )

    async def _driver_location(self, state: RouteReoptimizationState, orders: list[Order]) -> Coordinate:
        if self.store is not None:
            location = await asyncio.to_thread(self.store.get_driver_location, state.driver_id)
            if location is not None:
                return location
        if state.last_known_location is not None:
            return state.last_known_location
        return orders[0].effective_pickup_location

    async def _reoptimize(
        self,
        state: RouteReoptimizationState,
        event: RouteEvent,
        analysis: ReoptimizationAnalysis,
    ) -> ReoptimizationEvent:
        criteria = state.current_route.criteria
        try:
            orders, onboard = await self._remaining_orders(state)
            if not orders:
                return self._record(
                    state, event, ReoptimizationOutcome.NO_REMAINING_ORDERS, "No pending pickups on route", analysis
                )
            location = await self._driver_location(state, orders)
            windows = await asyncio.to_thread(self.engine.preparation_predictor.predict, orders)
            traffic = await asyncio.to_thread(self.engine.traffic_source.lookup, orders, location)
            baseline = await asyncio.to_thread(
                self.engine.evaluate_fixed_sequence,
                orders,
                location,
                criteria,
                preparation_windows=windows,
                traffic_conditions=traffic,
                route_id=state.route_id,
                onboard_orders=onboard,
            )
            candidate = await asyncio.to_thread(
                self.engine.calculate_optimal_route,
                orders,
                location,
                criteria,
                preparation_windows=windows,
                traffic_conditions=traffic,
                route_id=state.route_id,
                onboard_orders=onboard,
            )
        except Exception as exc:
            logger.exception("Reoptimization of route %s failed", state.route_id)
            return self._record(state, event, ReoptimizationOutcome.FAILED, f"Solve failed: {exc}", analysis)

        improvement = calculate_improvement(baseline, candidate)
        if not improvement.is_significant:
            logger.info("Reoptimization of route %s did not yield a significant improvement", state.route_id)
            return self._record(
                state,
                event,
                ReoptimizationOutcome.REJECTED,
                "Candidate route is not a significant improvement",
                analysis,
                improvement,
            )

        if self.store is not None:
            try:
                saved = await asyncio.to_thread(self.store.save_route, state.route_id, candidate)
            except Exception:
                logger.exception("Persisting reoptimized route %s raised", state.route_id)
                saved = False
            if not saved:
                return self._record(
                    state,
                    event,
                    ReoptimizationOutcome.FAILED,
                    "Could not persist reoptimized route; staying on current route",
                    analysis,
                    improvement,
                )

        previous = state.current_route
        now = self.clock()
        state.accept(candidate, now)
        self.route_updates.publish(
            RouteUpdate(
                route_id=state.route_id,
                updated_waypoints=candidate.waypoints,
                new_optimization_score=candidate.optimization_score,
                reason=analysis.reason,
                updated_at=now,
                changes={
                    "trigger": event.event_type.value,
                    "previous_order_sequence": previous.order_ids,
                    "new_order_sequence": candidate.order_ids,
                    "time_saving_minutes": improvement.time_saving_minutes,
                    "distance_saving_km": improvement.distance_saving_km,
                    "score_improvement": improvement.score_improvement,
                },
            )
        )
        await self._notify_driver(state, candidate, improvement, now)
        logger.info(
            "Route %s reoptimized: %.0fmin saved, %.1fkm reduced",
            state.route_id,
            improvement.time_saving_minutes,
            improvement.distance_saving_km,
        )
        return self._record(state, event, ReoptimizationOutcome.ACCEPTED, analysis.reason, analysis, improvement)

    async def _notify_driver(
        self,
        state: RouteReoptimizationState,
        route: OptimizedRoute,
        improvement: RouteImprovement,
        now: datetime,
    ) -> None:
        minutes = int(improvement.time_saving_minutes)
        notification = DriverNotification(
            id=f"reopt_{uuid.uuid4().hex[:12]}",
            driver_id=state.driver_id,
            route_id=state.route_id,
            title="Route Optimized",
            message=(
                f"Your route has been optimized to save {minutes} minutes "
                f"and {improvement.distance_saving_km:.1f}km"
            ),
            timestamp=now,
            is_urgent=improvement.time_saving_minutes > settings.urgent_notification_minutes,
            data={
                "time_saving_minutes": minutes,
                "distance_saving_km": improvement.distance_saving_km,
                "score_improvement": improvement.score_improvement,
                "new_total_duration_minutes": route.total_duration.total_seconds() / 60.0,
                "new_total_distance_km": route.total_distance_km,
            },
        )
        self.driver_notifications.publish(notification)
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.save_notification, notification)
        except Exception:
            logger.exception("Storing notification %s failed", notification.id)

    def _record(
        self,
        state: RouteReoptimizationState,
        event: RouteEvent,
        outcome: ReoptimizationOutcome,
        reason: str,
        analysis: ReoptimizationAnalysis | None = None,
        improvement: RouteImprovement | None = None,
    ) -> ReoptimizationEvent:
        record = ReoptimizationEvent(
            route_id=state.route_id,
            event=event,
            outcome=outcome,
            reason=reason,
            timestamp=self.clock(),
            analysis=analysis,
            improvement=improvement,
        )
        if outcome is not ReoptimizationOutcome.DUPLICATE:
            self.reoptimization_events.publish(record)
        logger.debug("Route %s event %s: %s (%s)", state.route_id, event.id, outcome.value, reason)
        return record
