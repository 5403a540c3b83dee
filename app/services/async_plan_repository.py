"""
Async persistence for fitness plans.

``activate_new_plan`` deactivates the user's current plan and inserts the new
one inside a single transaction. Readers therefore never see two active
plans, and never see the old plan gone without the new one in place.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.fitness_plan import FitnessPlan
from app.schemas.plan_generation import PlanGenerationResult, PlanPreferences
from app.services.plan_errors import PersistenceInconsistency

logger = logging.getLogger(__name__)

REASON_NEW_PLAN = "New plan generated"
REASON_GENERATION_STARTED = "New plan generation started"
REASON_RESET = "Plan generation reset"


def _money(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(round(float(value), 2)))


class AsyncFitnessPlanService:
    """Async service for the ``fitness_plans`` table."""

    @staticmethod
    async def get_active_plan(db: AsyncSession, user_id: int) -> Optional[FitnessPlan]:
        result = await db.execute(
            select(FitnessPlan).where(
                and_(FitnessPlan.user_id == user_id, FitnessPlan.is_active.is_(True))
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_latest_plan_created_at(db: AsyncSession, user_id: int) -> Optional[datetime]:
        result = await db.execute(
            select(FitnessPlan.created_at)
            .where(FitnessPlan.user_id == user_id)
            .order_by(desc(FitnessPlan.created_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def deactivate_user_plans(db: AsyncSession, user_id: int, reason: str, commit: bool = True) -> int:
        """Mark every active plan of the user inactive. Returns the number of plans touched."""
        try:
            result = await db.execute(
                update(FitnessPlan)
                .where(and_(FitnessPlan.user_id == user_id, FitnessPlan.is_active.is_(True)))
                .values(
                    is_active=False,
                    deactivated_at=datetime.now(timezone.utc),
                    deactivation_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if commit:
                await db.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error deactivating fitness plans for user {user_id}: {e}")
            raise

    @staticmethod
    def build_plan(user_id: int, preferences: PlanPreferences, result: PlanGenerationResult) -> FitnessPlan:
        return FitnessPlan(
            user_id=user_id,
            preferences=preferences.model_dump(mode="json", by_alias=True),
            workout_plan=result.workout_plan.model_dump(mode="json", by_alias=True, exclude_none=True),
            meal_plan=result.meal_plan.model_dump(mode="json", by_alias=True, exclude_none=True),
            grocery_list=result.grocery_list.model_dump(mode="json", by_alias=True, exclude_none=True),
            nutrition_data=result.nutrition_data.model_dump(mode="json", by_alias=True),
            summary=result.summary.model_dump(mode="json", by_alias=True),
            weekly_budget=_money(preferences.weekly_budget),
            budget_currency=preferences.budget_currency,
            actual_cost=_money(result.grocery_list.total_cost),
            is_active=True,
        )

    @classmethod
    async def activate_new_plan(
        cls,
        db: AsyncSession,
        user_id: int,
        preferences: PlanPreferences,
        result: PlanGenerationResult,
        commit: bool = True,
    ) -> FitnessPlan:
        """
        Deactivate the current active plan and insert the new one atomically.

        With ``commit=False`` the caller owns the transaction and may add more
        writes (e.g. completing the progress record) before committing.

        Raises:
            PersistenceInconsistency: If the transaction fails. The whole
                transaction is rolled back; ``has_active_plan`` on the error
                tells whether the user still has an active plan afterwards.
        """
        try:
            await cls.deactivate_user_plans(db, user_id, REASON_NEW_PLAN, commit=False)
            plan = cls.build_plan(user_id, preferences, result)
            db.add(plan)
            await db.flush()
            if commit:
                await db.commit()
                await db.refresh(plan)
            logger.info(f"Activated fitness plan {plan.id} for user {user_id}")
            return plan
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error activating new fitness plan for user {user_id}: {e}")
            raise await cls.describe_failure(db, user_id, e)

    @classmethod
    async def describe_failure(cls, db: AsyncSession, user_id: int, error: Exception) -> PersistenceInconsistency:
        """Build the inconsistency error after a rolled back activation, checking what the user is left with."""
        has_active_plan = False
        try:
            has_active_plan = await cls.get_active_plan(db, user_id) is not None
        except SQLAlchemyError as lookup_error:
            logger.error(f"Could not verify active plan for user {user_id}: {lookup_error}")
        return PersistenceInconsistency(
            "Your new plan could not be saved"
            + ("." if has_active_plan else " and you currently have no active plan."),
            user_id=user_id,
            has_active_plan=has_active_plan,
            original_error=error,
        )
