from .base import TSPSolver, nearest_neighbor_sequence
from .dispatcher import get_solver
from .exact import ExactBranchAndBound
from .genetic import GeneticSolver
from .hybrid import HybridSolver

__all__ = [
    "ExactBranchAndBound",
    "GeneticSolver",
    "HybridSolver",
    "TSPSolver",
    "get_solver",
    "nearest_neighbor_sequence",
]
