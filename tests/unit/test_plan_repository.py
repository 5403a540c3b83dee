"""
Unit tests for fitness plan persistence and the activation transition.
"""

import pytest
from sqlalchemy import select

from app.models.fitness_plan import FitnessPlan
from app.schemas.plan_generation import (
    GroceryList,
    MealPlan,
    NutritionData,
    PlanGenerationResult,
    PlanSummary,
    WorkoutPlan,
)
from app.services.async_plan_repository import AsyncFitnessPlanService, REASON_NEW_PLAN
from app.services.plan_errors import PersistenceInconsistency
from tests.async_test_utils import GROCERY_LIST_DOC, MEAL_PLAN_DOC, WORKOUT_PLAN_DOC, create_plan


@pytest.fixture
def result():
    return PlanGenerationResult(
        nutrition_data=NutritionData(calories=2759, protein=172, carbs=345, fat=77, bmr=1780, tdee=2759),
        workout_plan=WorkoutPlan.model_validate(WORKOUT_PLAN_DOC),
        meal_plan=MealPlan.model_validate(MEAL_PLAN_DOC),
        grocery_list=GroceryList.model_validate(GROCERY_LIST_DOC),
        summary=PlanSummary(fitness_goal="maintenance", weekly_workouts=3, daily_calories=2759,
                            weekly_cost=22.7, diet_type="Balanced"),
    )


async def _plans(db, user_id):
    db.expire_all()
    rows = await db.execute(select(FitnessPlan).where(FitnessPlan.user_id == user_id).order_by(FitnessPlan.id))
    return list(rows.scalars().all())


@pytest.mark.asyncio
async def test_activate_new_plan_replaces_active_plan(async_db_session, test_user, preferences, result):
    old = await create_plan(async_db_session, test_user.id)

    new = await AsyncFitnessPlanService.activate_new_plan(async_db_session, test_user.id, preferences, result)

    plans = await _plans(async_db_session, test_user.id)
    active = [plan for plan in plans if plan.is_active]
    assert [plan.id for plan in active] == [new.id]

    previous = next(plan for plan in plans if plan.id == old.id)
    assert previous.deactivated_at is not None
    assert previous.deactivation_reason == REASON_NEW_PLAN


@pytest.mark.asyncio
async def test_activated_plan_content(async_db_session, test_user, preferences, result):
    plan = await AsyncFitnessPlanService.activate_new_plan(async_db_session, test_user.id, preferences, result)

    assert plan.summary["weeklyWorkouts"] == 3
    assert plan.nutrition_data["calories"] == 2759
    assert plan.workout_plan["weeklySchedule"]["monday"]["name"] == "Upper Body Strength"
    assert plan.meal_plan["weeklyMeals"]["monday"]["pre_workout"]["name"] == "Banana"
    assert plan.preferences["workoutDaysPerWeek"] == 3
    assert float(plan.weekly_budget) == 60.0
    assert float(plan.actual_cost) == 22.7
    assert plan.budget_currency == "GBP"


@pytest.mark.asyncio
async def test_failed_insert_rolls_back_deactivation(async_db_session, test_user, preferences, result, monkeypatch):
    old = await create_plan(async_db_session, test_user.id)

    def broken_plan(user_id, preferences, result):
        return FitnessPlan(user_id=None, preferences={}, workout_plan={}, meal_plan={}, is_active=True)

    monkeypatch.setattr(AsyncFitnessPlanService, "build_plan", staticmethod(broken_plan))

    with pytest.raises(PersistenceInconsistency) as exc_info:
        await AsyncFitnessPlanService.activate_new_plan(async_db_session, test_user.id, preferences, result)

    assert exc_info.value.has_active_plan is True
    assert exc_info.value.user_id == test_user.id
    plans = await _plans(async_db_session, test_user.id)
    assert [(plan.id, plan.is_active) for plan in plans] == [(old.id, True)]


@pytest.mark.asyncio
async def test_failure_without_active_plan_is_reported(async_db_session, test_user, preferences, result, monkeypatch):
    def broken_plan(user_id, preferences, result):
        return FitnessPlan(user_id=None, preferences={}, workout_plan={}, meal_plan={}, is_active=True)

    monkeypatch.setattr(AsyncFitnessPlanService, "build_plan", staticmethod(broken_plan))

    with pytest.raises(PersistenceInconsistency) as exc_info:
        await AsyncFitnessPlanService.activate_new_plan(async_db_session, test_user.id, preferences, result)

    assert exc_info.value.has_active_plan is False
    assert "no active plan" in exc_info.value.message


@pytest.mark.asyncio
async def test_database_rejects_second_active_plan(async_db_session, test_user):
    from sqlalchemy.exc import IntegrityError

    await create_plan(async_db_session, test_user.id)
    with pytest.raises(IntegrityError):
        await create_plan(async_db_session, test_user.id)
    await async_db_session.rollback()


@pytest.mark.asyncio
async def test_deactivate_user_plans_counts(async_db_session, test_user):
    await create_plan(async_db_session, test_user.id)
    await create_plan(async_db_session, test_user.id, is_active=False)

    assert await AsyncFitnessPlanService.deactivate_user_plans(async_db_session, test_user.id, "test") == 1
    assert await AsyncFitnessPlanService.deactivate_user_plans(async_db_session, test_user.id, "test") == 0
    assert await AsyncFitnessPlanService.get_active_plan(async_db_session, test_user.id) is None
