"""
Unit tests for the external plan-step generators and plan summary.
"""

import json
from unittest.mock import AsyncMock

import pytest

from app.schemas.plan_generation import GroceryList, NutritionData, WorkoutPlan
from app.services.plan_errors import GenerationFailure
from app.services.plan_generator import (
    WORKOUT_PLAN_SCHEMA_HINT,
    build_grocery_prompt,
    build_meal_prompt,
    create_plan_summary,
    decode_document,
    generate_grocery_list,
    generate_meal_plan,
    generate_workout_plan,
)
from tests.async_test_utils import GROCERY_LIST_DOC, MEAL_PLAN_DOC, WORKOUT_PLAN_DOC


@pytest.fixture
def nutrition():
    return NutritionData(calories=2759, protein=172, carbs=345, fat=77, bmr=1780, tdee=2759)


@pytest.mark.parametrize("content, reason", [
    ("", "Empty response"),
    ("   ", "Empty response"),
    ("{not json", "invalid JSON"),
    ("[1, 2, 3]", "expected a JSON object"),
    (json.dumps({"weeklySchedule": {}}), "does not match schema"),
    (json.dumps({"weeklySchedule": {"monday": {"name": "Rest", "exercises": []}}}), "does not match schema"),
])
def test_decode_document_rejects_unusable_content(content, reason):
    with pytest.raises(GenerationFailure) as exc_info:
        decode_document(content, WorkoutPlan, 2, "workout plan")

    error = exc_info.value
    assert error.step == 2
    assert error.step_name == "workout plan"
    assert reason in error.message
    assert error.message.startswith("Plan generation failed at step 2:")


def test_decode_document_keeps_unknown_keys():
    doc = dict(WORKOUT_PLAN_DOC, coachComment="Great work")
    plan = decode_document(json.dumps(doc), WorkoutPlan, 2, "workout plan")

    assert plan.weekly_schedule["monday"].exercises[0].name == "Bench Press"
    assert plan.model_dump(by_alias=True)["coachComment"] == "Great work"


@pytest.mark.asyncio
async def test_generate_workout_plan_sends_schema_hint(preferences, male_biometrics):
    generator = AsyncMock()
    generator.generate.return_value = json.dumps(WORKOUT_PLAN_DOC)

    plan = await generate_workout_plan(generator, preferences, male_biometrics, user_id=1)

    assert set(plan.weekly_schedule) == {"monday", "wednesday", "friday"}
    prompt, hint = generator.generate.await_args.args
    assert hint == WORKOUT_PLAN_SCHEMA_HINT
    assert "Workout days per week: 3" in prompt
    assert "Fitness goal: maintenance" in prompt


@pytest.mark.asyncio
async def test_call_errors_become_generation_failures(preferences, male_biometrics, nutrition):
    generator = AsyncMock()
    generator.generate.side_effect = RuntimeError("rate limited")

    with pytest.raises(GenerationFailure) as exc_info:
        await generate_meal_plan(generator, preferences, male_biometrics, nutrition, user_id=1)

    assert exc_info.value.step == 3
    assert exc_info.value.message == "Plan generation failed at step 3: rate limited"
    assert isinstance(exc_info.value.original_error, RuntimeError)


@pytest.mark.asyncio
async def test_generate_grocery_list_uses_meal_plan(preferences):
    from app.schemas.plan_generation import MealPlan

    meal_plan = MealPlan.model_validate(MEAL_PLAN_DOC)
    generator = AsyncMock()
    generator.generate.return_value = json.dumps(GROCERY_LIST_DOC)

    grocery = await generate_grocery_list(generator, preferences, meal_plan)

    assert grocery.total_cost == 22.7
    prompt = generator.generate.await_args.args[0]
    assert "Porridge" in prompt
    assert prompt == build_grocery_prompt(preferences, meal_plan)


def test_meal_prompt_carries_nutrition_targets(preferences, male_biometrics, nutrition):
    prompt = build_meal_prompt(preferences, male_biometrics, nutrition)

    assert "Daily calorie target: 2759 calories" in prompt
    assert "Protein target: 172g" in prompt
    assert "Dietary restrictions: peanuts" in prompt
    assert "Weekly budget: 60.0 GBP" in prompt


def test_plan_summary(preferences, nutrition):
    grocery = GroceryList.model_validate(GROCERY_LIST_DOC)

    summary = create_plan_summary(preferences, nutrition, grocery)

    assert summary.fitness_goal == "maintenance"
    assert summary.weekly_workouts == 3
    assert summary.daily_calories == 2759
    assert summary.weekly_cost == 22.7
    assert summary.diet_type == "high-protein"
    assert summary.adaptations == ["Adapted for high-protein diet", "Excludes peanuts"]


def test_plan_summary_flags_budget_pressure(preferences, nutrition):
    grocery = GroceryList.model_validate(dict(GROCERY_LIST_DOC, totalCost=55))
    preferences = preferences.model_copy(update={"diet_preferences": [], "restrictions": []})

    summary = create_plan_summary(preferences, nutrition, grocery)

    assert summary.diet_type == "Balanced"
    assert summary.adaptations == ["Optimized for budget constraints"]
