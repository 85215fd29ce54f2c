"""Base classes for TSP solver implementations."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Mapping, Sequence

from ....config import settings
from ....models.domain import Order, PreparationWindow, TrafficCondition
from ..distance_matrix import DistanceMatrix
from ..models import OptimizationCriteria
from ..scoring import SequenceScorer


class TSPSolver(ABC):
    """Contract for pickup-sequence solvers.

    ``solve`` returns a permutation of ``range(len(orders))``. Randomized solvers draw
    from the ``random.Random`` handed to them so runs can be reproduced with a seed.
    """

    name: str = "base"

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def solve(
        self,
        *,
        orders: Sequence[Order],
        distance_matrix: DistanceMatrix,
        traffic_conditions: Mapping[str, TrafficCondition],
        preparation_windows: Mapping[str, PreparationWindow],
        criteria: OptimizationCriteria,
        reference_time: datetime | None = None,
    ) -> list[int]:
        if not orders:
            return []
        scorer = SequenceScorer(
            orders=orders,
            distance_matrix=distance_matrix,
            traffic_conditions=traffic_conditions,
            preparation_windows=preparation_windows,
            criteria=criteria,
            reference_time=reference_time,
        )
        if len(orders) == 1:
            return [0]
        return self.search(scorer)

    @abstractmethod
    def search(self, scorer: SequenceScorer) -> list[int]:
        raise NotImplementedError


def nearest_neighbor_sequence(scorer: SequenceScorer, start: int | None = None) -> list[int]:
    """Greedy construction picking the best-scoring transition at each step.

    When ``start`` is given the sequence is forced to begin with that order.
    """

    n = scorer.order_count
    remaining = set(range(n))
    sequence: list[int] = []
    current: int | None = None
    elapsed = 0.0

    if start is not None:
        sequence.append(start)
        remaining.discard(start)
        elapsed = scorer.pickup_arrival_minutes(sequence)[-1] + settings.pickup_dwell_minutes
        current = start

    while remaining:
        best = max(
            sorted(remaining),
            key=lambda candidate: scorer.evaluate_transition(current, candidate, elapsed),
        )
        sequence.append(best)
        remaining.discard(best)
        elapsed = scorer.pickup_arrival_minutes(sequence)[-1] + settings.pickup_dwell_minutes
        current = best
    return sequence
