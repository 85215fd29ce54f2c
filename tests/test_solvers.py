import itertools
import random
from datetime import datetime, timedelta, timezone

import pytest

from route_engine.models.domain import Coordinate, Order, PreparationWindow, TrafficCondition
from route_engine.services.routing.distance_matrix import build_distance_matrix
from route_engine.services.routing.models import OptimizationCriteria
from route_engine.services.routing.scoring import SequenceScorer
from route_engine.services.routing.solvers import (
    ExactBranchAndBound,
    GeneticSolver,
    HybridSolver,
    get_solver,
    nearest_neighbor_sequence,
)
from route_engine.services.routing.solvers.genetic import (
    insertion_mutation,
    inversion_mutation,
    order_crossover,
    swap_mutation,
)
from route_engine.services.routing.solvers.hybrid import simulated_annealing, two_opt

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
ORIGIN = Coordinate(3.1390, 101.6869)


def _problem(order_count: int, seed: int):
    rng = random.Random(seed)
    orders, windows, traffic = [], {}, {}
    for idx in range(order_count):
        oid = f"o{idx}"
        pickup = Coordinate(ORIGIN.latitude + rng.uniform(-0.04, 0.04), ORIGIN.longitude + rng.uniform(-0.04, 0.04))
        delivery = Coordinate(ORIGIN.latitude + rng.uniform(-0.04, 0.04), ORIGIN.longitude + rng.uniform(-0.04, 0.04))
        orders.append(Order(order_id=oid, delivery_location=delivery, pickup_location=pickup, vendor_id=f"v{idx}"))
        windows[oid] = PreparationWindow(
            order_id=oid,
            estimated_completion=NOW + timedelta(minutes=rng.uniform(-10, 40)),
            confidence=rng.uniform(0.5, 1.0),
        )
        traffic[oid] = rng.choice(list(TrafficCondition))
    return orders, windows, traffic


def _inputs(order_count: int, seed: int) -> dict:
    orders, windows, traffic = _problem(order_count, seed)
    return {
        "orders": orders,
        "distance_matrix": build_distance_matrix(orders, ORIGIN),
        "traffic_conditions": traffic,
        "preparation_windows": windows,
        "criteria": OptimizationCriteria.balanced(),
        "reference_time": NOW,
    }


def _scorer(inputs: dict) -> SequenceScorer:
    return SequenceScorer(**inputs)


def _brute_force_best(scorer: SequenceScorer) -> float:
    return max(scorer.evaluate_sequence(perm) for perm in itertools.permutations(range(scorer.order_count)))


@pytest.mark.parametrize("order_count", [1, 2, 3, 4])
@pytest.mark.parametrize("seed", [1, 7, 42])
def test_exact_solver_matches_brute_force(order_count, seed):
    inputs = _inputs(order_count, seed)
    sequence = ExactBranchAndBound().solve(**inputs)

    assert sorted(sequence) == list(range(order_count))
    scorer = _scorer(inputs)
    assert scorer.evaluate_sequence(sequence) == pytest.approx(_brute_force_best(scorer))


def test_exact_solver_is_deterministic():
    inputs = _inputs(4, 3)
    assert ExactBranchAndBound().solve(**inputs) == ExactBranchAndBound().solve(**inputs)


def test_exact_solver_orders_pickups_along_a_line():
    # pickups and deliveries coincide 1, 2 and 3 km east of the driver
    orders = [
        Order(order_id=f"o{km}", delivery_location=Coordinate(0.0, km / 111.195)) for km in (1, 2, 3)
    ]
    sequence = ExactBranchAndBound().solve(
        orders=orders,
        distance_matrix=build_distance_matrix(orders, Coordinate(0.0, 0.0)),
        traffic_conditions={},
        preparation_windows={},
        criteria=OptimizationCriteria.distance_focused(),
        reference_time=NOW,
    )
    assert sequence == [0, 1, 2]


def test_solvers_return_empty_sequence_for_no_orders():
    inputs = _inputs(0, 1)
    assert ExactBranchAndBound().solve(**inputs) == []


@pytest.mark.parametrize("seed", [5, 11])
def test_genetic_solver_is_close_to_optimum(seed):
    inputs = _inputs(6, seed)
    sequence = GeneticSolver(random.Random(seed)).solve(**inputs)

    assert sorted(sequence) == list(range(6))
    scorer = _scorer(inputs)
    assert scorer.evaluate_sequence(sequence) >= _brute_force_best(scorer) - 0.02


def test_genetic_solver_is_reproducible_with_a_seed():
    inputs = _inputs(7, 2)
    first = GeneticSolver(random.Random(99)).solve(**inputs)
    second = GeneticSolver(random.Random(99)).solve(**inputs)
    assert first == second


def test_genetic_initial_population_contains_nearest_neighbor_seed():
    inputs = _inputs(6, 4)
    solver = GeneticSolver(random.Random(1))
    scorer = _scorer(inputs)
    population = solver.initial_population(scorer)

    assert len(population) == 50
    assert nearest_neighbor_sequence(scorer) in population
    assert all(sorted(individual) == list(range(6)) for individual in population)


def test_hybrid_solver_beats_or_matches_nearest_neighbor():
    inputs = _inputs(10, 8)
    sequence = HybridSolver(random.Random(3), parallel=False).solve(**inputs)

    assert sorted(sequence) == list(range(10))
    scorer = _scorer(inputs)
    assert scorer.evaluate_sequence(sequence) >= scorer.evaluate_sequence(nearest_neighbor_sequence(scorer))


def test_hybrid_parallel_and_serial_runs_agree():
    inputs = _inputs(9, 21)
    serial = HybridSolver(random.Random(17), parallel=False).solve(**inputs)
    parallel = HybridSolver(random.Random(17), parallel=True).solve(**inputs)
    assert serial == parallel


def test_two_opt_never_worsens_a_sequence():
    scorer = _scorer(_inputs(7, 13))
    start = [6, 5, 4, 3, 2, 1, 0]
    improved = two_opt(scorer, start)
    assert sorted(improved) == list(range(7))
    assert scorer.evaluate_sequence(improved) >= scorer.evaluate_sequence(start)


def test_simulated_annealing_returns_a_permutation():
    scorer = _scorer(_inputs(9, 6))
    assert sorted(simulated_annealing(scorer, random.Random(0))) == list(range(9))


def test_order_crossover_keeps_a_slice_of_the_first_parent():
    rng = random.Random(4)
    parent_a = [0, 1, 2, 3, 4, 5, 6, 7]
    parent_b = [7, 6, 5, 4, 3, 2, 1, 0]
    for _ in range(20):
        child = order_crossover(parent_a, parent_b, rng)
        assert sorted(child) == parent_a
        kept = [gene for position, gene in enumerate(child) if parent_a[position] == gene]
        assert kept


@pytest.mark.parametrize("mutation", [swap_mutation, insertion_mutation, inversion_mutation])
def test_mutations_preserve_the_permutation(mutation):
    rng = random.Random(8)
    sequence = [0, 1, 2, 3, 4, 5]
    for _ in range(20):
        mutated = mutation(sequence, rng)
        assert sorted(mutated) == sequence
    assert sequence == [0, 1, 2, 3, 4, 5]


@pytest.mark.parametrize(
    "order_count, expected",
    [(1, ExactBranchAndBound), (4, ExactBranchAndBound), (5, GeneticSolver), (8, GeneticSolver), (9, HybridSolver)],
)
def test_solver_selection_by_batch_size(order_count, expected):
    assert isinstance(get_solver(order_count), expected)


def test_solver_selection_rejects_negative_counts():
    with pytest.raises(ValueError):
        get_solver(-1)
