"""Factory for TSP solvers based on batch size."""

from __future__ import annotations

import random

from ....config import settings
from .base import TSPSolver
from .exact import ExactBranchAndBound
from .genetic import GeneticSolver
from .hybrid import HybridSolver


def get_solver(order_count: int, rng: random.Random | None = None) -> TSPSolver:
    if order_count < 0:
        raise ValueError(f"Order count must be non-negative, got {order_count}.")
    match order_count:
        case n if n <= settings.exact_solver_max_orders:
            return ExactBranchAndBound(rng)
        case n if n <= settings.genetic_solver_max_orders:
            return GeneticSolver(rng)
        case _:
            return HybridSolver(rng)
