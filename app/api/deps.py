"""
API dependency injection module.

Re-exports the database and authentication dependencies and provides the
plan generation orchestrator built at application startup.
"""

import logging

from fastapi import HTTPException, Request, status

from app.db.async_session import get_async_db
from app.services.async_auth import get_current_active_user_async, get_current_user_async
from app.services.plan_orchestrator import PlanGenerationOrchestrator

logger = logging.getLogger(__name__)

__all__ = [
    "get_async_db",
    "get_current_user_async",
    "get_current_active_user_async",
    "get_plan_orchestrator",
]


def get_plan_orchestrator(request: Request) -> PlanGenerationOrchestrator:
    """
    Get the orchestrator stored on the application state.

    Raises:
        HTTPException: If the application started without one
    """
    orchestrator = getattr(request.app.state, "plan_orchestrator", None)
    if orchestrator is None:
        logger.error("Plan orchestrator requested before application startup")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Plan generation is not available",
        )
    return orchestrator
