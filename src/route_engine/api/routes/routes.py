"""Route optimization endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ...schemas.routing import OptimizedRouteModel, OptimizeRouteRequest
from ...services.routing.engine import RouteOptimizationEngine

router = APIRouter(prefix="/routes", tags=["routes"])
logger = logging.getLogger(__name__)


def _engine(request: Request) -> RouteOptimizationEngine:
    return request.app.state.engine


@router.post("/optimize", response_model=OptimizedRouteModel, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRouteRequest, request: Request) -> OptimizedRouteModel:
    try:
        route = _engine(request).calculate_optimal_route(
            payload.domain_orders(),
            payload.driver_location.to_domain(),
            payload.domain_criteria(),
            preparation_windows=payload.domain_preparation_windows(),
            traffic_conditions=payload.traffic_conditions,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Error optimizing route: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize route: {str(exc)}",
        ) from exc
    return OptimizedRouteModel.from_domain(route)
