"""
External plan-step generators.

Builds the prompts for the workout plan, meal plan and grocery list steps,
sends them through an injected ``TextGenerator`` and decodes the reply into the
step's schema. Anything short of a well-formed document (call error, empty
content, invalid JSON, wrong shape) becomes a ``GenerationFailure``; partial
documents never reach the orchestrator.
"""

import json
from typing import Optional, Protocol, Type, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.schemas.plan_generation import (
    GroceryList,
    MealPlan,
    NutritionData,
    PlanPreferences,
    PlanSummary,
    UserBiometrics,
    WorkoutPlan,
)
from app.services.plan_errors import GenerationFailure
from app.utils.logger import llm_logger

DocumentType = TypeVar("DocumentType", bound=BaseModel)

STEP_WORKOUT_PLAN = 2
STEP_MEAL_PLAN = 3
STEP_GROCERY_LIST = 4


class TextGenerator(Protocol):
    """Anything that turns a prompt into a JSON text reply."""

    async def generate(self, prompt: str, response_schema_hint: str, system_prompt: str = "") -> str:
        ...


class LangChainTextGenerator:
    """Chat-model backed text generator constrained to JSON object replies."""

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 temperature: Optional[float] = None, timeout: Optional[float] = None):
        self.model = model or settings.PLAN_GENERATION_MODEL
        self.llm = ChatOpenAI(
            model=self.model,
            api_key=api_key or settings.OPENAI_API_KEY,
            temperature=settings.PLAN_GENERATION_TEMPERATURE if temperature is None else temperature,
            timeout=timeout or settings.PLAN_GENERATION_STEP_TIMEOUT_SECONDS,
            max_retries=0,  # retries are the orchestrator's decision
            model_kwargs={"response_format": {"type": "json_object"}},
        )
        llm_logger.info("LangChainTextGenerator initialized", "INIT", model=self.model)

    async def generate(self, prompt: str, response_schema_hint: str, system_prompt: str = "") -> str:
        messages = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=f"{prompt}\n\nResponse must be valid JSON matching this format:\n{response_schema_hint}"))

        response = await self.llm.ainvoke(messages)
        content = response.content
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        return content or ""


WORKOUT_PLAN_SCHEMA_HINT = """{
  "weeklySchedule": {
    "monday": {
      "name": "string",
      "workoutType": "string",
      "targetMuscleGroups": ["string"],
      "exercises": [
        {"name": "string", "sets": number, "reps": number, "rest": number, "weight": number (optional), "notes": "string" (optional)}
      ],
      "duration": number,
      "caloriesBurned": number
    },
    ... (one entry per workout day)
  },
  "notes": "string with general advice"
}"""

MEAL_PLAN_SCHEMA_HINT = """{
  "weeklyMeals": {
    "monday": {
      "breakfast": {
        "name": "string",
        "description": "string",
        "ingredients": [{"name": "string", "quantity": "string", "unit": "string"}],
        "instructions": ["string"],
        "prepTime": number,
        "calories": number,
        "protein": number,
        "carbs": number,
        "fat": number,
        "cost": number
      },
      "lunch": { meal object },
      "dinner": { meal object },
      "snacks": [{ meal object }],
      "pre_workout": { meal object } (optional),
      "post_workout": { meal object } (optional),
      "totalCalories": number,
      "totalProtein": number,
      "totalCarbs": number,
      "totalFat": number,
      "totalCost": number
    },
    ... (other days)
  },
  "notes": "string with general advice"
}"""

GROCERY_LIST_SCHEMA_HINT = """{
  "items": [
    {
      "name": "string",
      "quantity": "string",
      "unit": "string",
      "price": number,
      "calories": number,
      "protein": number,
      "carbs": number,
      "fat": number,
      "usedIn": ["string"]
    }
  ],
  "totalCost": number,
  "budgetAllocation": {"protein": number, "carbs": number, "fruits": number, "vegetables": number, "dairy": number, "other": number}
}"""


def _describe_person(biometrics: UserBiometrics) -> str:
    return (
        f"- Age: {biometrics.age or 'Not specified'}\n"
        f"- Height: {biometrics.height or 'Not specified'} cm\n"
        f"- Weight: {biometrics.weight or 'Not specified'} kg"
    )


def _join_or_none(values) -> str:
    return ", ".join(values) if values else "None"


def build_workout_prompt(preferences: PlanPreferences, biometrics: UserBiometrics) -> str:
    return f"""
Create a detailed weekly workout plan for a {biometrics.sex or 'person'} with the following parameters:
{_describe_person(biometrics)}
- Fitness goal: {preferences.fitness_goal.value}
- Fitness level: {preferences.fitness_level}
- Workout days per week: {preferences.workout_days_per_week}
- Maximum workout duration: {preferences.workout_duration} minutes
- Activity level: {preferences.activity_level.value}

Format requirements:
1. Schedule exactly {preferences.workout_days_per_week} workout days with appropriate rest days between them
2. Each workout should have a name, type, target muscle groups, and a list of exercises
3. Each exercise should include sets, reps and rest periods in seconds
4. Include warm-up and cool-down recommendations in the notes
""".strip()


def build_meal_prompt(preferences: PlanPreferences, biometrics: UserBiometrics,
                      nutrition_data: NutritionData) -> str:
    return f"""
Create a detailed weekly meal plan for a {biometrics.sex or 'person'} with the following parameters:
{_describe_person(biometrics)}
- Daily calorie target: {nutrition_data.calories} calories
- Protein target: {nutrition_data.protein}g
- Carbs target: {nutrition_data.carbs}g
- Fat target: {nutrition_data.fat}g
- Dietary preferences: {_join_or_none(preferences.diet_preferences)}
- Dietary restrictions: {_join_or_none(preferences.restrictions)}
- Weekly budget: {preferences.weekly_budget} {preferences.budget_currency}

Format requirements:
1. Plan must include breakfast, lunch, dinner, and snacks for each day
2. Include pre-workout and post-workout meals on workout days
3. Each meal must include name, description, ingredients with quantities, instructions, prep time, and nutritional information
4. Meals should be varied but reuse common ingredients to minimize waste and stay within the budget
5. Use realistic portion sizes based on common packaging (e.g., full eggs, not 1.3 eggs)
""".strip()


def build_grocery_prompt(preferences: PlanPreferences, meal_plan: MealPlan) -> str:
    meal_plan_json = json.dumps(meal_plan.model_dump(by_alias=True, exclude_none=True))
    return f"""
Analyze this weekly meal plan and create an optimized grocery shopping list with the following requirements:
- Weekly budget: {preferences.weekly_budget} {preferences.budget_currency}
- Dietary preferences: {_join_or_none(preferences.diet_preferences)}
- Dietary restrictions: {_join_or_none(preferences.restrictions)}

Weekly meal plan details:
{meal_plan_json}

Requirements:
1. Consolidate ingredients across all meals (e.g., if multiple meals use eggs, combine the quantities)
2. For each item, include name, quantity, unit, price, nutritional info, and which meals it's used in
3. Calculate the total cost and keep it within the weekly budget
4. Create a budget allocation breakdown by food category
""".strip()


def decode_document(content: str, document_type: Type[DocumentType], step: int, step_name: str) -> DocumentType:
    """Parse and validate a model reply, failing the whole step on any defect."""
    if not content or not content.strip():
        raise GenerationFailure(step, step_name, ValueError(f"Failed to generate {step_name}: Empty response"))
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        raise GenerationFailure(step, step_name, ValueError(f"Failed to generate {step_name}: invalid JSON ({e.msg})"))
    if not isinstance(payload, dict):
        raise GenerationFailure(step, step_name, ValueError(f"Failed to generate {step_name}: expected a JSON object"))
    try:
        return document_type.model_validate(payload)
    except ValidationError as e:
        raise GenerationFailure(
            step, step_name,
            ValueError(f"Failed to generate {step_name}: response does not match schema ({e.error_count()} errors)"),
        )


async def _call(generator: TextGenerator, prompt: str, schema_hint: str, system_prompt: str,
                document_type: Type[DocumentType], step: int, step_name: str, user_id: Optional[int]) -> DocumentType:
    llm_logger.info(f"Generating {step_name}", step_name, user_id=user_id)
    try:
        content = await generator.generate(prompt, schema_hint, system_prompt=system_prompt)
    except GenerationFailure:
        raise
    except Exception as e:
        llm_logger.error(f"Error generating {step_name}", step_name, user_id=user_id, error=str(e))
        raise GenerationFailure(step, step_name, e)

    document = decode_document(content, document_type, step, step_name)
    llm_logger.success(f"Successfully generated {step_name}", step_name, user_id=user_id)
    return document


async def generate_workout_plan(generator: TextGenerator, preferences: PlanPreferences,
                                biometrics: UserBiometrics, user_id: Optional[int] = None) -> WorkoutPlan:
    return await _call(
        generator,
        build_workout_prompt(preferences, biometrics),
        WORKOUT_PLAN_SCHEMA_HINT,
        "You are a certified personal trainer and exercise specialist.",
        WorkoutPlan, STEP_WORKOUT_PLAN, "workout plan", user_id,
    )


async def generate_meal_plan(generator: TextGenerator, preferences: PlanPreferences, biometrics: UserBiometrics,
                             nutrition_data: NutritionData, user_id: Optional[int] = None) -> MealPlan:
    return await _call(
        generator,
        build_meal_prompt(preferences, biometrics, nutrition_data),
        MEAL_PLAN_SCHEMA_HINT,
        "You are a certified nutritionist and meal planning specialist.",
        MealPlan, STEP_MEAL_PLAN, "meal plan", user_id,
    )


async def generate_grocery_list(generator: TextGenerator, preferences: PlanPreferences,
                                meal_plan: MealPlan, user_id: Optional[int] = None) -> GroceryList:
    return await _call(
        generator,
        build_grocery_prompt(preferences, meal_plan),
        GROCERY_LIST_SCHEMA_HINT,
        "You are a meal planning and budgeting specialist.",
        GroceryList, STEP_GROCERY_LIST, "grocery list", user_id,
    )


BUDGET_PRESSURE_RATIO = 0.9


def create_plan_summary(preferences: PlanPreferences, nutrition_data: NutritionData,
                        grocery_list: GroceryList) -> PlanSummary:
    """Headline numbers and adaptations shown on the plan overview."""
    diet_type = ", ".join(preferences.diet_preferences) if preferences.diet_preferences else "Balanced"

    adaptations = [f"Adapted for {pref} diet" for pref in preferences.diet_preferences]
    adaptations += [f"Excludes {restriction}" for restriction in preferences.restrictions]
    if grocery_list.total_cost > preferences.weekly_budget * BUDGET_PRESSURE_RATIO:
        adaptations.append("Optimized for budget constraints")

    return PlanSummary(
        fitness_goal=preferences.fitness_goal.value,
        weekly_workouts=preferences.workout_days_per_week,
        daily_calories=nutrition_data.calories,
        weekly_cost=grocery_list.total_cost,
        diet_type=diet_type,
        adaptations=adaptations,
    )
