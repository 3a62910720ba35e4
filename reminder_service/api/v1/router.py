"""API v1 router configuration."""

from fastapi import APIRouter

from reminder_service.api.v1.endpoints import events, health, upcoming

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(events.router, tags=["Events"])
api_router.include_router(upcoming.router, prefix="/appointments", tags=["Appointments"])
