"""API router configuration.

Collects the endpoint routers mounted under ``API_V1_PREFIX``.
"""

from fastapi import APIRouter

from app.api.endpoints import health, plan_generation

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(plan_generation.router, prefix="/plan-generation", tags=["plan-generation"])
