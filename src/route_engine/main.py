"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, monitoring, routes
from .config import settings
from .db.supabase import get_supabase_client
from .persistence.database import SupabaseRouteStore
from .services.reoptimization.controller import ReoptimizationController
from .services.routing.engine import RouteOptimizationEngine


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = RouteOptimizationEngine()
    store = SupabaseRouteStore() if get_supabase_client() else None
    if store is None:
        logging.info("Supabase not configured - reoptimized routes will only be kept in memory")
    controller = ReoptimizationController(engine=engine, store=store, location_provider=store)
    app.state.engine = engine
    app.state.controller = controller
    try:
        yield
    finally:
        await controller.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(routes.router, prefix=settings.api_prefix)
    app.include_router(monitoring.router, prefix=settings.api_prefix)
    return app


app = create_app()
