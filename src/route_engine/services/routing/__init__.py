from .distance_matrix import DistanceMatrix, build_distance_matrix
from .engine import RouteOptimizationEngine
from .models import (
    CRITERIA_PRESETS,
    OptimizationCriteria,
    OptimizedRoute,
    RouteImprovement,
    RouteOptimizationError,
    RouteUpdate,
    RouteWaypoint,
    onboard_orders,
    pending_orders,
)
from .route_builder import build_route
from .scoring import TRAFFIC_SCORES, SequenceScorer, overall_traffic_condition

__all__ = [
    "CRITERIA_PRESETS",
    "DistanceMatrix",
    "OptimizationCriteria",
    "OptimizedRoute",
    "RouteImprovement",
    "RouteOptimizationEngine",
    "RouteOptimizationError",
    "RouteUpdate",
    "RouteWaypoint",
    "SequenceScorer",
    "TRAFFIC_SCORES",
    "build_distance_matrix",
    "build_route",
    "onboard_orders",
    "overall_traffic_condition",
    "pending_orders",
]
