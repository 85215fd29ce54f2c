"""Multi-criteria scoring of candidate stop sequences.

A sequence is a permutation of order indices. It is driven as origin -> pickups in
sequence order -> deliveries of orders already on board -> deliveries in sequence
order, and scored as a weighted sum of four sub-scores, each in [0, 1]:

* distance: ``max(0, 1 - total_km / 50)``
* preparation: mean alignment of simulated pickup arrivals with predicted ready times
* traffic: mean mapped traffic classification of the orders
* delivery window: fixed placeholder until customer windows are modeled
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Mapping, Sequence

from ...config import settings
from ...models.domain import Order, PreparationWindow, TrafficCondition
from .distance_matrix import DistanceMatrix
from .models import OptimizationCriteria

TRAFFIC_SCORES: dict[TrafficCondition, float] = {
    TrafficCondition.CLEAR: 1.0,
    TrafficCondition.LIGHT: 0.8,
    TrafficCondition.MODERATE: 0.6,
    TrafficCondition.HEAVY: 0.4,
    TrafficCondition.SEVERE: 0.2,
    TrafficCondition.UNKNOWN: 0.6,
}


def traffic_score(condition: TrafficCondition | None) -> float:
    if condition is None:
        return TRAFFIC_SCORES[TrafficCondition.MODERATE]
    return TRAFFIC_SCORES[condition]


def overall_traffic_condition(conditions: Mapping[str, TrafficCondition]) -> TrafficCondition:
    if not conditions:
        return TrafficCondition.UNKNOWN
    average = sum(traffic_score(condition) for condition in conditions.values()) / len(conditions)
    if average >= 0.8:
        return TrafficCondition.LIGHT
    if average >= 0.6:
        return TrafficCondition.MODERATE
    if average >= 0.4:
        return TrafficCondition.HEAVY
    return TrafficCondition.SEVERE


def travel_minutes(distance_km: float) -> float:
    return distance_km / settings.average_speed_kmh * 60.0


class SequenceScorer:
    """Scores sequences for one solve. Instances are cheap and not shared between solves."""

    def __init__(
        self,
        *,
        orders: Sequence[Order],
        distance_matrix: DistanceMatrix,
        traffic_conditions: Mapping[str, TrafficCondition],
        preparation_windows: Mapping[str, PreparationWindow],
        criteria: OptimizationCriteria,
        reference_time: datetime | None = None,
    ) -> None:
        self.orders = list(orders)
        self.matrix = distance_matrix
        self.traffic_conditions = traffic_conditions
        self.preparation_windows = preparation_windows
        self.criteria = criteria
        self.reference_time = reference_time or datetime.now(timezone.utc)
        self._order_traffic = [traffic_score(traffic_conditions.get(order.order_id)) for order in self.orders]
        self._cache: dict[tuple[int, ...], float] = {}

    @property
    def order_count(self) -> int:
        return len(self.orders)

    # -- sub-scores -------------------------------------------------------

    def route_distance_km(self, sequence: Sequence[int]) -> float:
        if not sequence:
            return 0.0
        matrix = self.matrix
        path = [0]
        path.extend(matrix.pickup_index(idx) for idx in sequence)
        path.extend(matrix.onboard_index(position) for position in range(matrix.onboard_count))
        path.extend(matrix.delivery_index(idx) for idx in sequence)
        return sum(matrix.between(current, following) for current, following in zip(path, path[1:]))

    def distance_score(self, sequence: Sequence[int]) -> float:
        if not sequence:
            return 0.0
        return max(0.0, 1.0 - self.route_distance_km(sequence) / settings.distance_normalization_km)

    def pickup_arrival_minutes(self, sequence: Sequence[int]) -> list[float]:
        """Minutes after the reference time at which each pickup in ``sequence`` is reached."""

        arrivals: list[float] = []
        elapsed = 0.0
        previous = 0
        for order_index in sequence:
            node = self.matrix.pickup_index(order_index)
            elapsed += travel_minutes(self.matrix.between(previous, node))
            arrivals.append(elapsed)
            elapsed += settings.pickup_dwell_minutes
            previous = node
        return arrivals

    def preparation_alignment(self, order_index: int, arrival_minutes: float) -> float:
        window = self.preparation_windows.get(self.orders[order_index].order_id)
        if window is None:
            return settings.missing_preparation_score
        arrival = self.reference_time + timedelta(minutes=arrival_minutes)
        if window.is_ready_by(arrival):
            return window.confidence
        delay_minutes = (window.estimated_completion - arrival).total_seconds() / 60.0
        attenuation = max(0.0, 1.0 - delay_minutes / settings.preparation_delay_ceiling_minutes)
        return window.confidence * attenuation

    def preparation_score(self, sequence: Sequence[int]) -> float:
        if not sequence:
            return 0.0
        arrivals = self.pickup_arrival_minutes(sequence)
        total = sum(self.preparation_alignment(idx, arrival) for idx, arrival in zip(sequence, arrivals))
        return total / len(sequence)

    def traffic_score(self, sequence: Sequence[int]) -> float:
        if not sequence:
            return 0.0
        return sum(self._order_traffic[idx] for idx in sequence) / len(sequence)

    def delivery_window_score(self, sequence: Sequence[int]) -> float:
        # TODO: replace with customer delivery windows once orders carry them
        return settings.delivery_window_placeholder_score

    # -- aggregate --------------------------------------------------------

    def breakdown(self, sequence: Sequence[int]) -> dict[str, float]:
        return {
            "distance": self.distance_score(sequence),
            "preparation": self.preparation_score(sequence),
            "traffic": self.traffic_score(sequence),
            "delivery_window": self.delivery_window_score(sequence),
        }

    def evaluate_sequence(self, sequence: Sequence[int]) -> float:
        key = tuple(sequence)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        parts = self.breakdown(key)
        criteria = self.criteria
        score = (
            parts["distance"] * criteria.distance_weight
            + parts["preparation"] * criteria.preparation_time_weight
            + parts["traffic"] * criteria.traffic_weight
            + parts["delivery_window"] * criteria.delivery_window_weight
        )
        self._cache[key] = score
        return score

    def evaluate_transition(self, from_index: int | None, to_index: int, elapsed_minutes: float = 0.0) -> float:
        """Score appending pickup ``to_index`` after ``from_index`` (``None`` = driver origin).

        Uses the same sub-score definitions as :meth:`evaluate_sequence` restricted to the
        new leg, with the leg distance normalized against the transition ceiling.
        """

        origin = 0 if from_index is None else self.matrix.pickup_index(from_index)
        leg_km = self.matrix.between(origin, self.matrix.pickup_index(to_index))
        distance = max(0.0, 1.0 - leg_km / settings.transition_distance_normalization_km)
        arrival = elapsed_minutes + travel_minutes(leg_km)
        preparation = self.preparation_alignment(to_index, arrival)
        criteria = self.criteria
        return (
            distance * criteria.distance_weight
            + preparation * criteria.preparation_time_weight
            + self._order_traffic[to_index] * criteria.traffic_weight
            + settings.delivery_window_placeholder_score * criteria.delivery_window_weight
        )

    def transition_table(self) -> list[list[float]]:
        """Transition scores from the origin (row 0) and from each pickup (row i+1), at zero elapsed time."""

        n = self.order_count
        table = [[self.evaluate_transition(None, to) for to in range(n)]]
        for source in range(n):
            table.append([self.evaluate_transition(source, to) for to in range(n)])
        return table
