"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/monitoring", status_code=status.HTTP_200_OK)
def health_monitoring(request: Request) -> dict:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        return {"service": "reoptimization", "healthy": False, "monitored_routes": 0}
    return {
        "service": "reoptimization",
        "healthy": True,
        "monitored_routes": len(controller.monitored_routes),
        "persistence": controller.store is not None,
    }
