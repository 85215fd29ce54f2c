"""Reoptimization monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response, status

from ...schemas.monitoring import (
    ChangeFeedRequest,
    EventAcceptedResponse,
    MonitoringStateModel,
    RouteEventRequest,
    StartMonitoringRequest,
)
from ...services.outputs.route_formatter import route_to_csv
from ...services.reoptimization.controller import ReoptimizationController
from ...services.reoptimization.feeds import change_event
from ...services.reoptimization.models import RouteNotMonitoredError

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


def _controller(request: Request) -> ReoptimizationController:
    return request.app.state.controller


def _not_monitored(route_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Route '{route_id}' is not being monitored.",
    )


@router.post("/routes", response_model=MonitoringStateModel, status_code=status.HTTP_201_CREATED)
async def start_monitoring(payload: StartMonitoringRequest, request: Request) -> MonitoringStateModel:
    controller = _controller(request)
    try:
        current_route = payload.current_route.to_domain()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    state = await controller.initialize_route_monitoring(payload.driver_id, payload.route_id, current_route)
    return MonitoringStateModel.from_state(state, controller.clock())


@router.delete("/routes/{route_id}", status_code=status.HTTP_200_OK)
async def stop_monitoring(route_id: str, request: Request) -> dict:
    if not await _controller(request).stop_route_monitoring(route_id):
        raise _not_monitored(route_id)
    return {"success": True, "route_id": route_id}


@router.get("/routes/{route_id}", response_model=MonitoringStateModel)
def get_monitoring_state(route_id: str, request: Request) -> MonitoringStateModel:
    controller = _controller(request)
    try:
        state = controller.get_state(route_id)
    except RouteNotMonitoredError as exc:
        raise _not_monitored(route_id) from exc
    return MonitoringStateModel.from_state(state, controller.clock())


@router.get("/routes/{route_id}/waypoints.csv")
def export_waypoints(route_id: str, request: Request) -> Response:
    try:
        state = _controller(request).get_state(route_id)
    except RouteNotMonitoredError as exc:
        raise _not_monitored(route_id) from exc
    return Response(
        content=route_to_csv(state.current_route),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{route_id}_waypoints.csv"'},
    )


@router.post("/events", response_model=EventAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(payload: RouteEventRequest, request: Request) -> EventAcceptedResponse:
    try:
        event = payload.to_domain()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        queued = _controller(request).submit(event)
    except RouteNotMonitoredError as exc:
        raise _not_monitored(payload.route_id) from exc
    if not queued:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Event queue for route '{payload.route_id}' is full.",
        )
    return EventAcceptedResponse(event_id=event.id, route_id=payload.route_id)


@router.post(
    "/routes/{route_id}/changes",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_change(route_id: str, payload: ChangeFeedRequest, request: Request) -> EventAcceptedResponse:
    """Map a change-feed row to a route event and queue it.

    Changes that carry nothing to act on are acknowledged with ``queued`` false.
    """

    controller = _controller(request)
    try:
        state = controller.get_state(route_id)
    except RouteNotMonitoredError as exc:
        raise _not_monitored(route_id) from exc
    try:
        event = change_event(payload.source, route_id, payload.record, payload.old_record, driver_id=state.driver_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if event is None:
        return EventAcceptedResponse(route_id=route_id, queued=False)
    try:
        queued = controller.submit(event)
    except RouteNotMonitoredError as exc:
        raise _not_monitored(route_id) from exc
    if not queued:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Event queue for route '{route_id}' is full.",
        )
    return EventAcceptedResponse(event_id=event.id, route_id=route_id)
