"""Genetic algorithm for medium batches."""

from __future__ import annotations

import logging
import random

from ....config import settings
from ..scoring import SequenceScorer
from .base import TSPSolver, nearest_neighbor_sequence

logger = logging.getLogger(__name__)


def order_crossover(parent_a: list[int], parent_b: list[int], rng: random.Random) -> list[int]:
    """OX: keep a random slice of ``parent_a`` and fill the gaps in ``parent_b``'s relative order."""

    size = len(parent_a)
    start, end = sorted(rng.sample(range(size + 1), 2))
    child: list[int | None] = [None] * size
    child[start:end] = parent_a[start:end]
    kept = set(parent_a[start:end])
    filler = iter(gene for gene in parent_b if gene not in kept)
    for position in range(size):
        if child[position] is None:
            child[position] = next(filler)
    return child  # type: ignore[return-value]


def swap_mutation(sequence: list[int], rng: random.Random) -> list[int]:
    mutated = list(sequence)
    i, j = rng.sample(range(len(mutated)), 2)
    mutated[i], mutated[j] = mutated[j], mutated[i]
    return mutated


def insertion_mutation(sequence: list[int], rng: random.Random) -> list[int]:
    mutated = list(sequence)
    gene = mutated.pop(rng.randrange(len(mutated)))
    mutated.insert(rng.randrange(len(mutated) + 1), gene)
    return mutated


def inversion_mutation(sequence: list[int], rng: random.Random) -> list[int]:
    mutated = list(sequence)
    i, j = sorted(rng.sample(range(len(mutated)), 2))
    mutated[i : j + 1] = reversed(mutated[i : j + 1])
    return mutated


MUTATIONS = (swap_mutation, insertion_mutation, inversion_mutation)


def mutate(sequence: list[int], rng: random.Random) -> list[int]:
    return rng.choice(MUTATIONS)(sequence, rng)


class GeneticSolver(TSPSolver):
    name = "genetic"

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        population_size: int | None = None,
        generations: int | None = None,
    ) -> None:
        super().__init__(rng)
        self.population_size = population_size or settings.ga_population_size
        self.generations = generations or settings.ga_generations

    def initial_population(self, scorer: SequenceScorer) -> list[list[int]]:
        n = scorer.order_count
        random_count = int(self.population_size * settings.ga_random_fraction)
        population: list[list[int]] = []
        for _ in range(random_count):
            individual = list(range(n))
            self.rng.shuffle(individual)
            population.append(individual)

        seed = nearest_neighbor_sequence(scorer)
        population.append(seed)
        while len(population) < self.population_size:
            population.append(mutate(seed, self.rng))
        return population

    def tournament(self, ranked: list[tuple[float, list[int]]]) -> list[int]:
        contenders = self.rng.sample(ranked, min(settings.ga_tournament_size, len(ranked)))
        return max(contenders, key=lambda entry: entry[0])[1]

    def search(self, scorer: SequenceScorer) -> list[int]:
        population = self.initial_population(scorer)
        elite_count = max(1, int(self.population_size * settings.ga_elite_fraction))

        for _ in range(self.generations):
            ranked = sorted(
                ((scorer.evaluate_sequence(individual), individual) for individual in population),
                key=lambda entry: entry[0],
                reverse=True,
            )
            next_generation = [list(individual) for _, individual in ranked[:elite_count]]
            while len(next_generation) < self.population_size:
                child = order_crossover(self.tournament(ranked), self.tournament(ranked), self.rng)
                if self.rng.random() < settings.ga_mutation_rate:
                    child = mutate(child, self.rng)
                next_generation.append(child)
            population = next_generation

        best = max(population, key=scorer.evaluate_sequence)
        logger.debug(
            "Genetic search finished after %d generations, best score %.4f",
            self.generations,
            scorer.evaluate_sequence(best),
        )
        return best
