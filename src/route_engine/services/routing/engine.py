"""Route optimization orchestration."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from ...config import settings
from ...models.domain import Coordinate, Order, PreparationWindow, TrafficCondition
from ..preparation import FallbackPreparationPredictor, PreparationTimePredictor
from ..traffic import SimulatedTrafficSource, TrafficSource
from .distance_matrix import DistanceMatrix, build_distance_matrix
from .models import OptimizationCriteria, OptimizedRoute, RouteOptimizationError
from .route_builder import build_route
from .scoring import SequenceScorer, overall_traffic_condition
from .solvers import get_solver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RouteOptimizationEngine:
    """Distance matrix -> solver -> route builder.

    The engine holds no per-solve state and may be called from worker threads.
    """

    def __init__(
        self,
        *,
        preparation_predictor: PreparationTimePredictor | None = None,
        traffic_source: TrafficSource | None = None,
        rng: random.Random | None = None,
        seed: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.clock = clock or _utcnow
        if rng is None:
            seed = settings.solver_seed if seed is None else seed
            rng = random.Random(seed)
        self.rng = rng
        self.preparation_predictor = preparation_predictor or FallbackPreparationPredictor(clock=self.clock)
        self.traffic_source = traffic_source or SimulatedTrafficSource(
            rng=random.Random(self.rng.getrandbits(64)),
            clock=self.clock,
        )

    def _solver_rng(self) -> random.Random:
        return random.Random(self.rng.getrandbits(64))

    def _prepare(
        self,
        orders: Sequence[Order],
        driver_location: Coordinate,
        preparation_windows: Mapping[str, PreparationWindow] | None,
        traffic_conditions: Mapping[str, TrafficCondition] | None,
        onboard_orders: Sequence[Order] = (),
    ) -> tuple[Mapping[str, PreparationWindow], Mapping[str, TrafficCondition], DistanceMatrix]:
        if not orders:
            raise ValueError("At least one order is required to calculate a route.")
        order_ids = [order.order_id for order in orders] + [order.order_id for order in onboard_orders]
        if len(set(order_ids)) != len(order_ids):
            raise ValueError("Order identifiers must be unique within a batch.")

        if preparation_windows is None:
            preparation_windows = self.preparation_predictor.predict(orders)
        if traffic_conditions is None:
            traffic_conditions = self.traffic_source.lookup(orders, driver_location)

        distance_matrix = build_distance_matrix(orders, driver_location, onboard_orders)
        expected_size = distance_matrix.expected_size
        if distance_matrix.values.shape != (expected_size, expected_size):
            raise RouteOptimizationError(
                f"Distance matrix has shape {distance_matrix.values.shape}, expected {expected_size}x{expected_size}."
            )
        return preparation_windows, traffic_conditions, distance_matrix

    def _assemble(
        self,
        *,
        sequence: Sequence[int],
        orders: Sequence[Order],
        distance_matrix: DistanceMatrix,
        preparation_windows: Mapping[str, PreparationWindow],
        traffic_conditions: Mapping[str, TrafficCondition],
        criteria: OptimizationCriteria,
        now: datetime,
        algorithm: str,
        started: float,
        route_id: str | None,
        onboard_orders: Sequence[Order] = (),
    ) -> OptimizedRoute:
        if sorted(sequence) != list(range(len(orders))):
            raise RouteOptimizationError(f"{algorithm} solver returned an invalid sequence {list(sequence)}.")

        scorer = SequenceScorer(
            orders=orders,
            distance_matrix=distance_matrix,
            traffic_conditions=traffic_conditions,
            preparation_windows=preparation_windows,
            criteria=criteria,
            reference_time=now,
        )
        score = scorer.evaluate_sequence(sequence)
        elapsed_ms = (time.perf_counter() - started) * 1000
        return build_route(
            sequence=sequence,
            orders=orders,
            distance_matrix=distance_matrix,
            criteria=criteria,
            score=score,
            overall_traffic=overall_traffic_condition(traffic_conditions),
            departure_time=now,
            route_id=route_id,
            onboard_orders=onboard_orders,
            metadata={
                "algorithm": algorithm,
                "sequence": list(sequence),
                "score_breakdown": scorer.breakdown(sequence),
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )

    def calculate_optimal_route(
        self,
        orders: Sequence[Order],
        driver_location: Coordinate,
        criteria: OptimizationCriteria | None = None,
        *,
        preparation_windows: Mapping[str, PreparationWindow] | None = None,
        traffic_conditions: Mapping[str, TrafficCondition] | None = None,
        route_id: str | None = None,
        onboard_orders: Sequence[Order] = (),
    ) -> OptimizedRoute:
        """Choose the best pickup sequence for ``orders`` and build the timed route.

        Orders in ``onboard_orders`` are already picked up and keep a delivery leg only.
        Preparation windows and traffic conditions are looked up from the configured
        collaborators unless supplied. Raises ``ValueError`` for an empty or duplicated
        order list and ``RouteOptimizationError`` when the solver pipeline misbehaves.
        """

        criteria = criteria or OptimizationCriteria.balanced()
        started = time.perf_counter()
        now = self.clock()
        windows, traffic, distance_matrix = self._prepare(
            orders, driver_location, preparation_windows, traffic_conditions, onboard_orders
        )

        solver = get_solver(len(orders), self._solver_rng())
        logger.info("Optimizing route for %d orders with %s solver", len(orders), solver.name)
        sequence = solver.solve(
            orders=orders,
            distance_matrix=distance_matrix,
            traffic_conditions=traffic,
            preparation_windows=windows,
            criteria=criteria,
            reference_time=now,
        )
        route = self._assemble(
            sequence=sequence,
            orders=orders,
            distance_matrix=distance_matrix,
            preparation_windows=windows,
            traffic_conditions=traffic,
            criteria=criteria,
            now=now,
            algorithm=solver.name,
            started=started,
            route_id=route_id,
            onboard_orders=onboard_orders,
        )
        logger.info(
            "Route %s optimized: %d waypoints, %.2f km, score %.1f (%s, %.1f ms)",
            route.id,
            len(route.waypoints),
            route.total_distance_km,
            route.optimization_score,
            solver.name,
            route.metadata["elapsed_ms"],
        )
        return route

    def evaluate_fixed_sequence(
        self,
        orders: Sequence[Order],
        driver_location: Coordinate,
        criteria: OptimizationCriteria | None = None,
        *,
        preparation_windows: Mapping[str, PreparationWindow] | None = None,
        traffic_conditions: Mapping[str, TrafficCondition] | None = None,
        route_id: str | None = None,
        onboard_orders: Sequence[Order] = (),
    ) -> OptimizedRoute:
        """Build and score a route that keeps ``orders`` in the given pickup order."""

        criteria = criteria or OptimizationCriteria.balanced()
        started = time.perf_counter()
        now = self.clock()
        windows, traffic, distance_matrix = self._prepare(
            orders, driver_location, preparation_windows, traffic_conditions, onboard_orders
        )
        return self._assemble(
            sequence=list(range(len(orders))),
            orders=orders,
            distance_matrix=distance_matrix,
            preparation_windows=windows,
            traffic_conditions=traffic,
            criteria=criteria,
            now=now,
            algorithm="fixed",
            started=started,
            route_id=route_id,
            onboard_orders=onboard_orders,
        )
