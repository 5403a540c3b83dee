"""
Async data access for plan generation progress records.

Every mutation of a running attempt is a compare-and-set keyed on
``generation_id`` and ``is_generating`` so that late writes from a cancelled,
reset or superseded attempt match no row and are dropped.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.plan_generation_progress import GenerationState, PlanGenerationProgress, TOTAL_STEPS

logger = logging.getLogger(__name__)


class AsyncGenerationProgressService:
    """Async service for the ``plan_generation_progress`` table."""

    @staticmethod
    async def get_by_user(db: AsyncSession, user_id: int) -> Optional[PlanGenerationProgress]:
        result = await db.execute(
            select(PlanGenerationProgress).where(PlanGenerationProgress.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def replace(
        db: AsyncSession,
        user_id: int,
        generation_id: str,
        step_message: str,
        estimated_time_remaining: int,
        input_data: Dict[str, Any],
        commit: bool = True,
    ) -> PlanGenerationProgress:
        """Delete any prior record for the user and create a fresh running one at step 1."""
        try:
            await db.execute(delete(PlanGenerationProgress).where(PlanGenerationProgress.user_id == user_id))
            progress = PlanGenerationProgress(
                user_id=user_id,
                generation_id=generation_id,
                status=GenerationState.running.value,
                is_generating=True,
                is_complete=False,
                current_step=1,
                total_steps=TOTAL_STEPS,
                step_message=step_message,
                estimated_time_remaining=estimated_time_remaining,
                retry_count=0,
                partial_result_data={},
                input_data=input_data,
            )
            db.add(progress)
            await db.flush()
            if commit:
                await db.commit()
                await db.refresh(progress)
            return progress
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error replacing generation progress for user {user_id}: {e}")
            raise

    @staticmethod
    def _running(user_id: int, generation_id: str):
        return and_(
            PlanGenerationProgress.user_id == user_id,
            PlanGenerationProgress.generation_id == generation_id,
            PlanGenerationProgress.is_generating.is_(True),
        )

    @classmethod
    async def _conditional_update(cls, db: AsyncSession, criteria, values: Dict[str, Any], commit: bool) -> bool:
        try:
            result = await db.execute(
                update(PlanGenerationProgress)
                .where(criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if commit:
                await db.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error updating generation progress: {e}")
            raise

    @classmethod
    async def advance(
        cls,
        db: AsyncSession,
        user_id: int,
        generation_id: str,
        from_step: int,
        to_step: int,
        step_message: str,
        estimated_time_remaining: int,
        partial_result_data: Dict[str, Any],
        commit: bool = True,
    ) -> bool:
        """Move a running attempt from ``from_step`` to ``to_step``.

        Returns:
            False when the attempt was cancelled, reset, superseded or already
            advanced by someone else; the caller must discard its step output.
        """
        criteria = and_(cls._running(user_id, generation_id), PlanGenerationProgress.current_step == from_step)
        return await cls._conditional_update(db, criteria, {
            "current_step": to_step,
            "step_message": step_message,
            "estimated_time_remaining": estimated_time_remaining,
            "partial_result_data": partial_result_data,
            "retry_count": 0,
        }, commit)

    @classmethod
    async def record_retry(cls, db: AsyncSession, user_id: int, generation_id: str, step: int,
                           retry_count: int, step_message: str) -> bool:
        criteria = and_(cls._running(user_id, generation_id), PlanGenerationProgress.current_step == step)
        return await cls._conditional_update(db, criteria, {
            "retry_count": retry_count,
            "step_message": step_message,
        }, True)

    @classmethod
    async def complete(
        cls,
        db: AsyncSession,
        user_id: int,
        generation_id: str,
        from_step: int,
        step_message: str,
        partial_result_data: Dict[str, Any],
        commit: bool = True,
    ) -> bool:
        criteria = and_(cls._running(user_id, generation_id), PlanGenerationProgress.current_step == from_step)
        return await cls._conditional_update(db, criteria, {
            "current_step": TOTAL_STEPS,
            "status": GenerationState.complete.value,
            "is_generating": False,
            "is_complete": True,
            "step_message": step_message,
            "estimated_time_remaining": 0,
            "error_message": None,
            "partial_result_data": partial_result_data,
        }, commit)

    @classmethod
    async def fail(
        cls,
        db: AsyncSession,
        user_id: int,
        generation_id: str,
        error_message: str,
        state: GenerationState = GenerationState.failed,
    ) -> bool:
        """Put a running attempt into a terminal failure state."""
        return await cls._conditional_update(db, cls._running(user_id, generation_id), {
            "status": state.value,
            "is_generating": False,
            "is_complete": False,
            "step_message": error_message,
            "estimated_time_remaining": 0,
            "error_message": error_message,
        }, True)

    @classmethod
    async def cancel(cls, db: AsyncSession, user_id: int, error_message: str) -> bool:
        """Stop whatever attempt is running for the user; False if none is."""
        criteria = and_(
            PlanGenerationProgress.user_id == user_id,
            PlanGenerationProgress.is_generating.is_(True),
        )
        return await cls._conditional_update(db, criteria, {
            "status": GenerationState.cancelled.value,
            "is_generating": False,
            "is_complete": False,
            "step_message": error_message,
            "estimated_time_remaining": 0,
            "error_message": error_message,
        }, True)

    @staticmethod
    async def delete(db: AsyncSession, user_id: int, commit: bool = True) -> bool:
        try:
            result = await db.execute(
                delete(PlanGenerationProgress)
                .where(PlanGenerationProgress.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            if commit:
                await db.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error deleting generation progress for user {user_id}: {e}")
            raise

    @staticmethod
    async def find_stale(db: AsyncSession, cutoff: datetime) -> List[PlanGenerationProgress]:
        """Running records whose last update is older than ``cutoff``."""
        result = await db.execute(
            select(PlanGenerationProgress).where(
                and_(
                    PlanGenerationProgress.is_generating.is_(True),
                    PlanGenerationProgress.updated_at < cutoff,
                )
            )
        )
        return list(result.scalars().all())
