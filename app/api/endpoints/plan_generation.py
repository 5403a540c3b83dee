"""Plan generation endpoints: start/status/continue/cancel/reset/result/active."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_plan_orchestrator
from app.db.async_session import get_async_db
from app.models.plan_generation_progress import PlanGenerationProgress
from app.models.user import User
from app.schemas.plan_generation import (
    FitnessPlanResponse,
    GenerationStatusResponse,
    MessageResponse,
    PlanGenerationResult,
    PlanGenerationStartRequest,
)
from app.services.async_auth import get_current_active_user_async
from app.services.async_plan_repository import AsyncFitnessPlanService
from app.services.plan_errors import GenerationNotFound, PlanErrorHandler, PlanGenerationError
from app.services.plan_orchestrator import ContinueOutcome, PlanGenerationOrchestrator
from app.utils.logger import api_logger

router = APIRouter()

CONTINUE_MESSAGES = {
    ContinueOutcome.advancing: "Continuing plan generation",
    ContinueOutcome.in_flight: "Step already in progress",
    ContinueOutcome.already_complete: "Plan generation already complete",
}


def _status_response(progress: PlanGenerationProgress, orchestrator: PlanGenerationOrchestrator,
                     message: Optional[str] = None) -> GenerationStatusResponse:
    return GenerationStatusResponse(
        message=message,
        status=progress.status,
        is_generating=progress.is_generating,
        is_complete=progress.is_complete,
        step=progress.current_step,
        total_steps=progress.total_steps,
        step_message=progress.step_message,
        estimated_time_remaining=progress.estimated_time_remaining,
        error_message=progress.error_message,
        retry_count=progress.retry_count or 0,
        partial_result_data=progress.partial_result_data,
        in_flight=orchestrator.is_in_flight(progress.user_id, progress.generation_id),
        updated_at=progress.updated_at,
    )


@router.post("/start", response_model=GenerationStatusResponse)
async def start_plan_generation(
    request: PlanGenerationStartRequest,
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    """Start generating a new fitness plan; returns immediately with step 1."""
    api_logger.info("Start requested", "START", user_id=current_user.id)
    try:
        progress = await orchestrator.start(current_user.id, request.preferences, request.biometrics)
    except PlanGenerationError as e:
        raise PlanErrorHandler.to_http_exception(e)
    return _status_response(progress, orchestrator, "Plan generation started")


@router.get("/status", response_model=GenerationStatusResponse)
async def get_plan_generation_status(
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    progress = await orchestrator.get_status(current_user.id)
    if progress is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No plan generation found")
    return _status_response(progress, orchestrator)


@router.post("/continue", response_model=GenerationStatusResponse)
async def continue_plan_generation(
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    """Advance to the next step. Redundant calls while a step runs are no-ops."""
    try:
        result = await orchestrator.continue_generation(current_user.id)
    except PlanGenerationError as e:
        raise PlanErrorHandler.to_http_exception(e)

    if result.outcome == ContinueOutcome.not_generating:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.progress.error_message or "Plan generation is not in progress",
        )
    return _status_response(result.progress, orchestrator, CONTINUE_MESSAGES[result.outcome])


@router.post("/cancel", response_model=MessageResponse)
async def cancel_plan_generation(
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    try:
        cancelled = await orchestrator.cancel(current_user.id)
    except PlanGenerationError as e:
        raise PlanErrorHandler.to_http_exception(e)

    if cancelled:
        return MessageResponse(message="Plan generation cancelled")
    return MessageResponse(message="No plan generation in progress to cancel", success=False)


@router.post("/reset", response_model=MessageResponse)
async def reset_plan_generation(
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    """Clear the progress record and deactivate active plans. Always succeeds."""
    await orchestrator.reset(current_user.id)
    return MessageResponse(message="Plan generation reset successfully")


@router.get("/result", response_model=PlanGenerationResult)
async def get_plan_generation_result(
    current_user: User = Depends(get_current_active_user_async),
    orchestrator: PlanGenerationOrchestrator = Depends(get_plan_orchestrator),
):
    try:
        return await orchestrator.get_result(current_user.id)
    except GenerationNotFound as e:
        raise PlanErrorHandler.to_http_exception(e)


@router.get("/active", response_model=FitnessPlanResponse)
async def get_active_fitness_plan(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_current_active_user_async),
):
    plan = await AsyncFitnessPlanService.get_active_plan(db, current_user.id)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active fitness plan")
    return FitnessPlanResponse.model_validate(plan)
