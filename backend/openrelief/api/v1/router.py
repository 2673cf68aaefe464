"""
Main API router for v1 endpoints.
"""

from fastapi import APIRouter

from openrelief.api.v1.endpoints import events, trust

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(trust.router, prefix="/trust", tags=["trust-scoring"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
