"""Hybrid heuristic for large batches: nearest neighbour, simulated annealing and 2-opt."""

from __future__ import annotations

import logging
import math
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from ....config import settings
from ..scoring import SequenceScorer
from .base import TSPSolver, nearest_neighbor_sequence

logger = logging.getLogger(__name__)


def nearest_neighbor_starts(scorer: SequenceScorer, limit: int) -> list[int]:
    """Distinct starting orders: the best-prepared pickup first, then those closest to the driver."""

    n = scorer.order_count
    by_preparation = max(range(n), key=lambda idx: (scorer.preparation_alignment(idx, 0.0), -idx))
    by_distance = sorted(range(n), key=lambda idx: (scorer.matrix.between(0, scorer.matrix.pickup_index(idx)), idx))
    starts = [by_preparation]
    for idx in by_distance:
        if len(starts) >= limit:
            break
        if idx not in starts:
            starts.append(idx)
    return starts


def simulated_annealing(scorer: SequenceScorer, rng: random.Random) -> list[int]:
    n = scorer.order_count
    current = list(range(n))
    rng.shuffle(current)
    current_score = scorer.evaluate_sequence(current)
    best, best_score = list(current), current_score
    temperature = settings.sa_initial_temperature

    for _ in range(settings.sa_iterations):
        i, j = rng.sample(range(n), 2)
        candidate = list(current)
        candidate[i], candidate[j] = candidate[j], candidate[i]
        candidate_score = scorer.evaluate_sequence(candidate)
        delta = candidate_score - current_score
        if delta > 0 or (temperature > 0 and rng.random() < math.exp(delta / temperature)):
            current, current_score = candidate, candidate_score
            if current_score > best_score:
                best, best_score = list(current), current_score
        temperature *= settings.sa_cooling_rate
    return best


def two_opt(scorer: SequenceScorer, sequence: list[int]) -> list[int]:
    """Reverse segments while any reversal improves the score."""

    best = list(sequence)
    best_score = scorer.evaluate_sequence(best)
    improved = True
    while improved:
        improved = False
        for i in range(len(best) - 1):
            for j in range(i + 1, len(best)):
                candidate = best[:i] + best[i : j + 1][::-1] + best[j + 1 :]
                candidate_score = scorer.evaluate_sequence(candidate)
                if candidate_score > best_score:
                    best, best_score = candidate, candidate_score
                    improved = True
    return best


class HybridSolver(TSPSolver):
    name = "hybrid"

    def __init__(self, rng: random.Random | None = None, *, parallel: bool | None = None) -> None:
        super().__init__(rng)
        self.parallel = settings.solver_parallel_branches if parallel is None else parallel

    def _branches(self, scorer: SequenceScorer) -> list[Callable[[], list[int]]]:
        branches: list[Callable[[], list[int]]] = [
            lambda start=start: nearest_neighbor_sequence(scorer, start)
            for start in nearest_neighbor_starts(scorer, settings.nearest_neighbor_starts)
        ]
        annealing_rng = random.Random(self.rng.getrandbits(64))
        branches.append(lambda: simulated_annealing(scorer, annealing_rng))
        return branches

    def search(self, scorer: SequenceScorer) -> list[int]:
        branches = self._branches(scorer)
        if self.parallel:
            with ThreadPoolExecutor(max_workers=len(branches)) as executor:
                candidates = list(executor.map(lambda branch: branch(), branches))
        else:
            candidates = [branch() for branch in branches]

        best = max(candidates, key=scorer.evaluate_sequence)
        polished = two_opt(scorer, best)
        candidates.append(polished)

        winner = max(candidates, key=scorer.evaluate_sequence)
        logger.debug(
            "Hybrid search evaluated %d candidates, best score %.4f",
            len(candidates),
            scorer.evaluate_sequence(winner),
        )
        return winner
