"""
Routes Configuration

This module aggregates all controller routers into a single API router.
"""

from fastapi import APIRouter
from .controllers import health_router

# Main API Router
api_router = APIRouter()

# System endpoints (no prefix): /, /health, /live, /ready
api_router.include_router(health_router)
