import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from route_engine.models.domain import Coordinate, Order, StopRole
from route_engine.services.reoptimization.controller import ReoptimizationController, calculate_improvement
from route_engine.services.reoptimization.models import (
    DriverLocationUpdate,
    OrderReady,
    ReoptimizationOutcome,
    RouteEvent,
    RouteEventType,
    RouteId,
    RouteNotMonitoredError,
    WaypointCompleted,
)
from route_engine.services.routing.distance_matrix import build_distance_matrix
from route_engine.services.routing.engine import RouteOptimizationEngine
from route_engine.services.routing.models import OptimizationCriteria
from route_engine.services.routing.route_builder import build_route

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
KM = 1 / 111.195
ROUTE_ID = "route_1"


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


def _orders(*order_ids_and_km):
    return [
        Order(order_id=order_id, pickup_location=Coordinate(0.0, km * KM), delivery_location=Coordinate(0.0, km * KM))
        for order_id, km in order_ids_and_km
    ]


def _route(orders, *, distance=10.0, minutes=60, score=0.0):
    route = build_route(
        sequence=list(range(len(orders))),
        orders=orders,
        distance_matrix=build_distance_matrix(orders, Coordinate(0.0, 0.0)),
        criteria=OptimizationCriteria.balanced(),
        score=0.0,
        departure_time=START,
        route_id=ROUTE_ID,
    )
    return replace(
        route,
        total_distance_km=distance,
        total_duration=timedelta(minutes=minutes),
        duration_in_traffic=timedelta(minutes=minutes),
        optimization_score=score,
    )


CURRENT_ORDERS = _orders(("a", 1), ("b", 2))


class NoWindows:
    def predict(self, orders):
        return {}


class NoTraffic:
    def lookup(self, orders, driver_location):
        return {}


class StubEngine:
    """Returns a scripted baseline and candidate instead of solving."""

    def __init__(self, baseline=None, candidate=None, error=None):
        self.preparation_predictor = NoWindows()
        self.traffic_source = NoTraffic()
        self.baseline = baseline or _route(CURRENT_ORDERS, distance=10.0, minutes=60)
        self.candidate = candidate or _route(list(reversed(CURRENT_ORDERS)), distance=5.0, minutes=50, score=10.0)
        self.error = error
        self.calls = []

    def evaluate_fixed_sequence(self, orders, location, criteria, **kwargs):
        return self.baseline

    def calculate_optimal_route(self, orders, location, criteria, **kwargs):
        self.calls.append((orders, location, criteria, kwargs))
        if self.error is not None:
            raise self.error
        return self.candidate


class FakeStore:
    def __init__(self, save_result=True, location=None):
        self.save_result = save_result
        self.location = location
        self.saved_routes = []
        self.notifications = []

    def get_remaining_orders(self, route_id):
        return []

    def get_driver_location(self, driver_id):
        return self.location

    def save_route(self, route_id, route):
        self.saved_routes.append((route_id, route))
        return self.save_result

    def save_notification(self, notification):
        self.notifications.append(notification)
        return True


_counter = iter(range(1_000_000))


def _event(event_type=RouteEventType.ORDER_READY, payload=None, event_id=None, route_id=ROUTE_ID):
    return RouteEvent(
        id=event_id or f"evt_{next(_counter)}",
        route_id=RouteId(route_id),
        event_type=event_type,
        payload=payload or OrderReady(order_id="a"),
        timestamp=START,
    )


def _controller(engine=None, store=None, clock=None, **kwargs):
    return ReoptimizationController(engine=engine or StubEngine(), store=store, clock=clock or FakeClock(), **kwargs)


async def _monitor(controller, route=None):
    return await controller.initialize_route_monitoring("driver_1", ROUTE_ID, route or _route(CURRENT_ORDERS))


def test_improvement_thresholds_are_strict():
    current = _route(CURRENT_ORDERS, distance=10.0, minutes=60, score=0.0)

    at_threshold = _route(CURRENT_ORDERS, distance=8.0, minutes=55, score=0.1)
    assert not calculate_improvement(current, at_threshold).is_significant

    assert calculate_improvement(current, _route(CURRENT_ORDERS, distance=10.0, minutes=54)).is_significant
    assert calculate_improvement(current, _route(CURRENT_ORDERS, distance=7.9, minutes=60)).is_significant
    assert calculate_improvement(current, _route(CURRENT_ORDERS, distance=10.0, minutes=60, score=0.5)).is_significant

    improvement = calculate_improvement(current, _route(CURRENT_ORDERS, distance=7.0, minutes=52, score=3.0))
    assert improvement.time_saving_minutes == pytest.approx(8)
    assert improvement.distance_saving_km == pytest.approx(3.0)
    assert improvement.score_improvement == pytest.approx(3.0)


def test_events_inside_cooldown_are_skipped():
    async def scenario():
        clock = FakeClock()
        engine = StubEngine()
        controller = _controller(engine=engine, clock=clock)
        await _monitor(controller)

        clock.advance(4)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result, engine

    result, engine = asyncio.run(scenario())
    assert result.outcome is ReoptimizationOutcome.COOLDOWN
    assert engine.calls == []


def test_accepted_reoptimization_updates_state_and_streams():
    async def scenario():
        clock = FakeClock()
        store = FakeStore()
        controller = _controller(store=store, clock=clock)
        state = await _monitor(controller)
        events = controller.reoptimization_events.subscribe()
        notifications = controller.driver_notifications.subscribe()
        updates = controller.route_updates.subscribe()

        clock.advance(6)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result, state, store, events, notifications, updates, clock

    result, state, store, events, notifications, updates, clock = asyncio.run(scenario())

    assert result.outcome is ReoptimizationOutcome.ACCEPTED
    assert result.improvement.time_saving_minutes == pytest.approx(10)
    assert state.current_route.order_ids == ["b", "a"]
    assert state.last_reoptimization == clock.now
    assert state.reoptimization_count(clock.now) == 1
    assert store.saved_routes[0][0] == ROUTE_ID

    assert events.get_nowait() is result
    notification = notifications.get_nowait()
    assert notification.driver_id == "driver_1"
    assert notification.message == "Your route has been optimized to save 10 minutes and 5.0km"
    assert not notification.is_urgent
    assert store.notifications == [notification]

    update = updates.get_nowait()
    assert update.changes["previous_order_sequence"] == ["a", "b"]
    assert update.changes["new_order_sequence"] == ["b", "a"]
    assert update.changes["trigger"] == "order_ready"


def test_cooldown_restarts_after_acceptance():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock)
        await _monitor(controller)

        clock.advance(6)
        first = await controller.process_event(_event())
        clock.advance(3)
        second = await controller.process_event(_event())
        await controller.shutdown()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.outcome is ReoptimizationOutcome.ACCEPTED
    assert second.outcome is ReoptimizationOutcome.COOLDOWN


def test_hourly_rate_limit_uses_a_rolling_window():
    async def scenario():
        clock = FakeClock()
        engine = StubEngine()
        controller = _controller(engine=engine, clock=clock)
        await _monitor(controller)
        outcomes = []
        for _ in range(7):
            clock.advance(6)
            outcomes.append((await controller.process_event(_event())).outcome)

        # t+67: the first acceptance at t+6 has left the window
        clock.advance(25)
        outcomes.append((await controller.process_event(_event())).outcome)
        await controller.shutdown()
        return outcomes, len(engine.calls)

    outcomes, solves = asyncio.run(scenario())
    assert outcomes[:6] == [ReoptimizationOutcome.ACCEPTED] * 6
    assert outcomes[6] is ReoptimizationOutcome.RATE_LIMITED
    assert outcomes[7] is ReoptimizationOutcome.ACCEPTED
    assert solves == 7


def test_candidate_at_thresholds_is_rejected():
    async def scenario():
        clock = FakeClock()
        candidate = _route(list(reversed(CURRENT_ORDERS)), distance=8.0, minutes=55, score=0.1)
        controller = _controller(engine=StubEngine(candidate=candidate), clock=clock)
        state = await _monitor(controller)
        before = state.current_route

        clock.advance(6)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result, state, before

    result, state, before = asyncio.run(scenario())
    assert result.outcome is ReoptimizationOutcome.REJECTED
    assert not result.improvement.is_significant
    assert state.current_route is before
    assert state.last_reoptimization == START


def test_distance_only_improvement_is_accepted():
    async def scenario():
        clock = FakeClock()
        candidate = _route(list(reversed(CURRENT_ORDERS)), distance=7.5, minutes=60, score=0.0)
        controller = _controller(engine=StubEngine(candidate=candidate), clock=clock)
        await _monitor(controller)
        clock.advance(6)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result

    assert asyncio.run(scenario()).outcome is ReoptimizationOutcome.ACCEPTED


def test_solver_failure_keeps_current_route():
    async def scenario():
        clock = FakeClock()
        controller = _controller(engine=StubEngine(error=RuntimeError("boom")), clock=clock)
        state = await _monitor(controller)
        before = state.current_route
        clock.advance(6)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result, state, before

    result, state, before = asyncio.run(scenario())
    assert result.outcome is ReoptimizationOutcome.FAILED
    assert "boom" in result.reason
    assert state.current_route is before


def test_persistence_failure_keeps_current_route():
    async def scenario():
        clock = FakeClock()
        store = FakeStore(save_result=False)
        controller = _controller(store=store, clock=clock)
        state = await _monitor(controller)
        before = state.current_route
        notifications = controller.driver_notifications.subscribe()
        clock.advance(6)
        result = await controller.process_event(_event())
        await controller.shutdown()
        return result, state, before, notifications

    result, state, before, notifications = asyncio.run(scenario())
    assert result.outcome is ReoptimizationOutcome.FAILED
    assert state.current_route is before
    assert notifications.empty()


def test_large_saving_sends_urgent_notification():
    async def scenario():
        clock = FakeClock()
        candidate = _route(list(reversed(CURRENT_ORDERS)), distance=9.0, minutes=40)
        controller = _controller(engine=StubEngine(candidate=candidate), clock=clock)
        await _monitor(controller)
        notifications = controller.driver_notifications.subscribe()
        clock.advance(6)
        await controller.process_event(_event())
        await controller.shutdown()
        return notifications.get_nowait()

    notification = asyncio.run(scenario())
    assert notification.is_urgent
    assert notification.data["time_saving_minutes"] == 20


def test_driver_location_from_store_takes_precedence():
    async def scenario():
        clock = FakeClock()
        engine = StubEngine()
        stored = Coordinate(3.1, 101.7)
        controller = _controller(engine=engine, store=FakeStore(location=stored), clock=clock)
        await _monitor(controller)
        await controller.process_event(
            _event(RouteEventType.DRIVER_LOCATION_UPDATE, DriverLocationUpdate("driver_1", Coordinate(1.0, 1.0)))
        )
        clock.advance(6)
        await controller.process_event(_event())
        await controller.shutdown()
        return engine.calls[0][1], stored

    location, stored = asyncio.run(scenario())
    assert location == stored


def test_last_known_location_used_without_store():
    async def scenario():
        clock = FakeClock()
        engine = StubEngine()
        controller = _controller(engine=engine, clock=clock)
        state = await _monitor(controller)
        update = await controller.process_event(
            _event(RouteEventType.DRIVER_LOCATION_UPDATE, DriverLocationUpdate("driver_1", Coordinate(1.0, 1.0)))
        )
        clock.advance(6)
        await controller.process_event(_event())
        await controller.shutdown()
        return update, state, engine.calls[0]

    update, state, (orders, location, criteria, kwargs) = asyncio.run(scenario())
    assert update.outcome is ReoptimizationOutcome.COOLDOWN
    assert location == Coordinate(1.0, 1.0)
    assert [order.order_id for order in orders] == ["a", "b"]
    assert criteria == OptimizationCriteria.balanced()
    assert kwargs["route_id"] == ROUTE_ID


def test_unmonitored_route_is_rejected():
    async def scenario():
        controller = _controller()
        with pytest.raises(RouteNotMonitoredError):
            await controller.process_event(_event(route_id="route_unknown"))
        with pytest.raises(RouteNotMonitoredError):
            controller.submit(_event(route_id="route_unknown"))
        with pytest.raises(RouteNotMonitoredError):
            controller.get_state("route_unknown")

    asyncio.run(scenario())


def test_duplicate_events_are_ignored_and_not_published():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock)
        await _monitor(controller)
        events = controller.reoptimization_events.subscribe()
        clock.advance(6)
        first = await controller.process_event(_event(event_id="same"))
        clock.advance(6)
        second = await controller.process_event(_event(event_id="same"))
        await controller.shutdown()
        return first, second, events

    first, second, events = asyncio.run(scenario())
    assert first.outcome is ReoptimizationOutcome.ACCEPTED
    assert second.outcome is ReoptimizationOutcome.DUPLICATE
    assert events.qsize() == 1


def test_completed_pickup_is_no_longer_a_reoptimization_target():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock)
        state = await _monitor(controller)
        clock.advance(6)
        await controller.process_event(
            _event(RouteEventType.WAYPOINT_COMPLETED, WaypointCompleted(waypoint_id="", order_id="a"))
        )
        result = await controller.process_event(_event(RouteEventType.ORDER_READY, OrderReady("a")))
        await controller.shutdown()
        return result, state

    result, state = asyncio.run(scenario())
    assert "pickup_a_1" in state.completed_waypoint_ids
    assert result.outcome is ReoptimizationOutcome.NOT_RECOMMENDED


def test_full_queue_rejects_submission():
    async def scenario():
        controller = _controller(queue_size=1)
        await _monitor(controller)
        accepted = [controller.submit(_event()), controller.submit(_event())]
        await controller.shutdown()
        return accepted

    assert asyncio.run(scenario()) == [True, False]


def test_worker_drains_submitted_events():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock)
        await _monitor(controller)
        events = controller.reoptimization_events.subscribe()
        clock.advance(6)
        assert controller.submit(_event())
        result = await asyncio.wait_for(events.get(), timeout=5)
        await controller.shutdown()
        return result

    assert asyncio.run(scenario()).outcome is ReoptimizationOutcome.ACCEPTED


def test_periodic_check_records_time():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock, periodic_interval=0.01)
        state = await _monitor(controller)
        clock.advance(1)
        for _ in range(100):
            if state.last_checked_at is not None:
                break
            await asyncio.sleep(0.01)
        await controller.shutdown()
        return state

    assert asyncio.run(scenario()).last_checked_at == START + timedelta(minutes=1)


def test_stop_monitoring():
    async def scenario():
        controller = _controller()
        state = await _monitor(controller)
        stopped = await controller.stop_route_monitoring(ROUTE_ID)
        again = await controller.stop_route_monitoring(ROUTE_ID)
        return controller, state, stopped, again

    controller, state, stopped, again = asyncio.run(scenario())
    assert stopped is True
    assert again is False
    assert not state.is_monitoring
    assert controller.monitored_routes == []
    assert not controller.is_monitoring(ROUTE_ID)


def test_real_engine_reorders_a_backwards_route():
    async def scenario():
        clock = FakeClock()
        engine = RouteOptimizationEngine(
            preparation_predictor=NoWindows(), traffic_source=NoTraffic(), seed=1, clock=clock
        )
        controller = ReoptimizationController(engine=engine, clock=clock)
        backwards = _orders(("c", 6), ("b", 4), ("a", 2))
        current = build_route(
            sequence=[0, 1, 2],
            orders=backwards,
            distance_matrix=build_distance_matrix(backwards, Coordinate(0.0, 0.0)),
            criteria=OptimizationCriteria.balanced(),
            score=0.5,
            departure_time=START,
            route_id=ROUTE_ID,
        )
        state = await _monitor(controller, current)
        await controller.process_event(
            _event(RouteEventType.DRIVER_LOCATION_UPDATE, DriverLocationUpdate("driver_1", Coordinate(0.0, 0.0)))
        )
        clock.advance(6)
        result = await controller.process_event(_event(RouteEventType.ORDER_READY, OrderReady("a")))
        await controller.shutdown()
        return result, state

    result, state = asyncio.run(scenario())
    assert result.outcome is ReoptimizationOutcome.ACCEPTED
    assert state.current_route.order_ids == ["a", "b", "c"]
    assert state.current_route.id == ROUTE_ID
    assert result.improvement.distance_saving_km == pytest.approx(4.0, abs=0.01)


def test_cooldown_skip_does_not_mark_the_event_processed():
    async def scenario():
        clock = FakeClock()
        controller = _controller(clock=clock)
        await _monitor(controller)
        clock.advance(2)
        early = await controller.process_event(_event(event_id="retry"))
        clock.advance(4)
        retried = await controller.process_event(_event(event_id="retry"))
        await controller.shutdown()
        return early, retried

    early, retried = asyncio.run(scenario())
    assert early.outcome is ReoptimizationOutcome.COOLDOWN
    assert retried.outcome is ReoptimizationOutcome.ACCEPTED


def test_location_updates_during_cooldown_are_not_replayed():
    async def scenario():
        controller = _controller()
        state = await _monitor(controller)
        update = _event(RouteEventType.DRIVER_LOCATION_UPDATE, DriverLocationUpdate("driver_1", Coordinate(1.0, 1.0)))
        first = await controller.process_event(update)
        second = await controller.process_event(update)
        await controller.shutdown()
        return first, second, state

    first, second, state = asyncio.run(scenario())
    assert first.outcome is ReoptimizationOutcome.COOLDOWN
    assert second.outcome is ReoptimizationOutcome.DUPLICATE
    assert state.last_known_location == Coordinate(1.0, 1.0)


def test_picked_up_order_keeps_its_delivery_after_reoptimization():
    async def scenario():
        clock = FakeClock()
        engine = RouteOptimizationEngine(
            preparation_predictor=NoWindows(), traffic_source=NoTraffic(), seed=1, clock=clock
        )
        controller = ReoptimizationController(engine=engine, clock=clock)
        orders = _orders(("x", 8), ("c", 6), ("b", 4), ("a", 2))
        current = build_route(
            sequence=[0, 1, 2, 3],
            orders=orders,
            distance_matrix=build_distance_matrix(orders, Coordinate(0.0, 0.0)),
            criteria=OptimizationCriteria.balanced(),
            score=0.5,
            departure_time=START,
            route_id=ROUTE_ID,
        )
        state = await _monitor(controller, current)
        await controller.process_event(
            _event(RouteEventType.WAYPOINT_COMPLETED, WaypointCompleted(waypoint_id="pickup_x_1"))
        )
        await controller.process_event(
            _event(RouteEventType.DRIVER_LOCATION_UPDATE, DriverLocationUpdate("driver_1", Coordinate(0.0, 0.0)))
        )
        clock.advance(6)
        result = await controller.process_event(_event(RouteEventType.ORDER_READY, OrderReady("a")))
        await controller.shutdown()
        return result, state

    result, state = asyncio.run(scenario())
    route = state.current_route
    assert result.outcome is ReoptimizationOutcome.ACCEPTED
    assert route.order_ids == ["a", "b", "c"]
    assert [wp.order_id for wp in route.delivery_waypoints] == ["x", "a", "b", "c"]
    assert [wp.role for wp in route.waypoints_for_order("x")] == [StopRole.DELIVERY]
    # baseline c, b, a then x: 10 + 2 + 6 + 2 + 2 = 22 km; a, b, c then x: 18 km
    assert result.improvement.distance_saving_km == pytest.approx(4.0, abs=0.01)
    assert route.total_distance_km == pytest.approx(18.0, abs=0.01)


def test_delivered_on_board_order_leaves_the_next_solve():
    async def scenario():
        clock = FakeClock()
        engine = StubEngine()
        controller = _controller(engine=engine, clock=clock)
        state = await _monitor(controller, _route(_orders(("x", 3), ("a", 1), ("b", 2))))
        state.complete_waypoint("pickup_x_1")
        clock.advance(6)
        await controller.process_event(_event(event_id="first"))
        state.current_route = _route(_orders(("x", 3), ("a", 1), ("b", 2)))
        state.complete_waypoint("pickup_x_1")
        state.complete_waypoint("delivery_x_4")
        clock.advance(6)
        await controller.process_event(_event(event_id="second"))
        await controller.shutdown()
        return engine.calls

    first, second = asyncio.run(scenario())
    assert [order.order_id for order in first[0]] == ["a", "b"]
    assert [order.order_id for order in first[3]["onboard_orders"]] == ["x"]
    assert [order.order_id for order in second[0]] == ["a", "b"]
    assert second[3]["onboard_orders"] == []


class FixedLocations:
    def __init__(self, location):
        self.location = location
        self.calls = []

    def current_location(self, driver_id):
        self.calls.append(driver_id)
        return self.location


def test_location_provider_feeds_monitored_routes():
    async def scenario():
        provider = FixedLocations(Coordinate(2.5, 101.5))
        controller = _controller(location_provider=provider)
        state = await _monitor(controller)
        for _ in range(100):
            if state.last_known_location is not None:
                break
            await asyncio.sleep(0.01)
        await controller.shutdown()
        return provider, state

    provider, state = asyncio.run(scenario())
    assert provider.calls[0] == "driver_1"
    assert state.last_known_location == Coordinate(2.5, 101.5)
