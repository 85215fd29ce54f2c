"""Exhaustive branch-and-bound search for small batches."""

from __future__ import annotations

import logging

from ..scoring import SequenceScorer
from .base import TSPSolver

logger = logging.getLogger(__name__)


class ExactBranchAndBound(TSPSolver):
    """Depth-first search over every pickup permutation.

    No branch is pruned on score: the batch-size cutoff keeps ``n!`` small. Children are
    expanded best-transition-first using a precomputed transition table so the first
    complete leaf is already a good incumbent, and only a strictly better leaf replaces it.
    """

    name = "exact"

    def search(self, scorer: SequenceScorer) -> list[int]:
        n = scorer.order_count
        transitions = scorer.transition_table()
        best_sequence: list[int] = []
        best_score = float("-inf")
        explored = 0

        def expand(partial: list[int], used: list[bool]) -> None:
            nonlocal best_sequence, best_score, explored
            if len(partial) == n:
                explored += 1
                score = scorer.evaluate_sequence(partial)
                if score > best_score:
                    best_score = score
                    best_sequence = list(partial)
                return

            row = transitions[0] if not partial else transitions[partial[-1] + 1]
            children = sorted((idx for idx in range(n) if not used[idx]), key=lambda idx: (-row[idx], idx))
            for child in children:
                used[child] = True
                partial.append(child)
                expand(partial, used)
                partial.pop()
                used[child] = False

        expand([], [False] * n)
        logger.debug("Branch-and-bound explored %d leaves, best score %.4f", explored, best_score)
        return best_sequence
