"""Plan generation schemas.

Request bodies, the documents produced by each generation step, and the
status/result payloads polled by the client. Documents exchanged with the
client and with the language model use camelCase keys; the Python attributes
stay snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class FitnessGoal(str, Enum):
    weight_loss = "weight_loss"
    muscle_gain = "muscle_gain"
    strength = "strength"
    stamina = "stamina"
    endurance = "endurance"
    maintenance = "maintenance"
    general_fitness = "general_fitness"


class ActivityLevel(str, Enum):
    sedentary = "sedentary"
    light = "light"
    moderate = "moderate"
    very_active = "very_active"
    extra_active = "extra_active"


GOAL_ALIASES = {
    "weightloss": FitnessGoal.weight_loss,
    "lose_weight": FitnessGoal.weight_loss,
    "musclebuild": FitnessGoal.muscle_gain,
    "muscle_build": FitnessGoal.muscle_gain,
    "musclegain": FitnessGoal.muscle_gain,
    "build_muscle": FitnessGoal.muscle_gain,
    "generalfitness": FitnessGoal.general_fitness,
}

ACTIVITY_ALIASES = {
    "lightly_active": ActivityLevel.light,
    "moderately_active": ActivityLevel.moderate,
    "veryactive": ActivityLevel.very_active,
    "extraactive": ActivityLevel.extra_active,
}


def normalize_goal(value: Union[str, FitnessGoal]) -> FitnessGoal:
    """Map either goal vocabulary onto the canonical enum.

    Raises:
        ValueError: If the goal is not recognised in either vocabulary
    """
    if isinstance(value, FitnessGoal):
        return value
    key = str(value).strip().replace("-", "_").replace(" ", "_")
    try:
        return FitnessGoal(key.lower())
    except ValueError:
        pass
    alias = GOAL_ALIASES.get(key.lower())
    if alias is None:
        raise ValueError(f"Unknown fitness goal: {value}")
    return alias


def normalize_activity_level(value: Union[str, ActivityLevel]) -> ActivityLevel:
    """Map activity level spellings onto the canonical enum.

    Raises:
        ValueError: If the activity level is not recognised
    """
    if isinstance(value, ActivityLevel):
        return value
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return ActivityLevel(key)
    except ValueError:
        pass
    alias = ACTIVITY_ALIASES.get(key)
    if alias is None:
        raise ValueError(f"Unknown activity level: {value}")
    return alias


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class PlanPreferences(CamelModel):
    """Validated preference object a generation is started with."""

    fitness_goal: FitnessGoal
    workout_days_per_week: int = Field(ge=1, le=7)
    diet_preferences: List[str] = Field(default_factory=list)
    restrictions: List[str] = Field(default_factory=list)
    weekly_budget: float = Field(gt=0)
    budget_currency: str = Field(default="GBP", min_length=3, max_length=3)
    activity_level: ActivityLevel
    workout_duration: int = Field(default=60, gt=0, le=240)
    fitness_level: str = "beginner"

    @field_validator("fitness_goal", mode="before")
    @classmethod
    def _normalize_goal(cls, value):
        return normalize_goal(value)

    @field_validator("activity_level", mode="before")
    @classmethod
    def _normalize_activity(cls, value):
        return normalize_activity_level(value)

    @field_validator("budget_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class UserBiometrics(CamelModel):
    """Body measurements feeding the nutrition calculator. Any field may be missing."""

    age: Optional[int] = Field(default=None, ge=13, le=100)
    sex: Optional[str] = None
    height: Optional[float] = Field(default=None, gt=0, le=260)  # cm
    weight: Optional[float] = Field(default=None, gt=0, le=300)  # kg


class PlanGenerationStartRequest(CamelModel):
    preferences: PlanPreferences
    biometrics: Optional[UserBiometrics] = None


# ---------------------------------------------------------------------------
# Step documents
# ---------------------------------------------------------------------------

class NutritionData(CamelModel):
    calories: int
    protein: int
    carbs: int
    fat: int
    bmr: float
    tdee: int


class StepDocument(CamelModel):
    """Base for documents produced by the language model; unknown keys are kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Exercise(StepDocument):
    name: str
    sets: int
    reps: Union[int, str]
    rest: Optional[int] = None  # seconds
    weight: Optional[float] = None
    notes: Optional[str] = None


class Workout(StepDocument):
    name: str
    workout_type: Optional[str] = None
    target_muscle_groups: List[str] = Field(default_factory=list)
    exercises: List[Exercise] = Field(min_length=1)
    duration: Optional[float] = None  # minutes
    calories_burned: Optional[float] = None


class WorkoutPlan(StepDocument):
    weekly_schedule: Dict[str, Workout] = Field(min_length=1)
    notes: str = ""


class MealIngredient(StepDocument):
    name: str
    quantity: Union[str, float] = ""
    unit: str = ""


class Meal(StepDocument):
    name: str
    description: str = ""
    ingredients: List[MealIngredient] = Field(default_factory=list)
    instructions: List[str] = Field(default_factory=list)
    prep_time: Optional[float] = None
    calories: float = 0
    protein: float = 0
    carbs: float = 0
    fat: float = 0
    cost: float = 0


class DailyMealPlan(StepDocument):
    breakfast: Meal
    lunch: Meal
    dinner: Meal
    snacks: List[Meal] = Field(default_factory=list)
    pre_workout: Optional[Meal] = Field(default=None, alias="pre_workout")
    post_workout: Optional[Meal] = Field(default=None, alias="post_workout")
    total_calories: float = 0
    total_protein: float = 0
    total_carbs: float = 0
    total_fat: float = 0
    total_cost: float = 0


class MealPlan(StepDocument):
    weekly_meals: Dict[str, DailyMealPlan] = Field(min_length=1)
    notes: str = ""


class GroceryItem(StepDocument):
    name: str
    quantity: Union[str, float] = ""
    unit: str = ""
    price: float = 0
    calories: float = 0
    protein: float = 0
    carbs: float = 0
    fat: float = 0
    used_in: List[str] = Field(default_factory=list)


class BudgetAllocation(StepDocument):
    protein: float = 0
    carbs: float = 0
    fruits: float = 0
    vegetables: float = 0
    dairy: float = 0
    other: float = 0


class GroceryList(StepDocument):
    items: List[GroceryItem] = Field(min_length=1)
    total_cost: float
    budget_allocation: BudgetAllocation = Field(default_factory=BudgetAllocation)


class PlanSummary(CamelModel):
    fitness_goal: str
    weekly_workouts: int
    daily_calories: int
    weekly_cost: float
    diet_type: str
    adaptations: List[str] = Field(default_factory=list)


class PlanGenerationResult(CamelModel):
    nutrition_data: NutritionData
    workout_plan: WorkoutPlan
    meal_plan: MealPlan
    grocery_list: GroceryList
    summary: PlanSummary


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class GenerationStatusResponse(CamelModel):
    """Progress record as reported to polling clients."""

    message: Optional[str] = None
    status: str
    is_generating: bool
    is_complete: bool
    step: int
    total_steps: int
    step_message: Optional[str] = None
    estimated_time_remaining: Optional[int] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    partial_result_data: Optional[Dict[str, Any]] = None
    in_flight: bool = False
    updated_at: Optional[datetime] = None


class EligibilityResult(CamelModel):
    can_start: bool
    reason_if_not: Optional[str] = None
    days_remaining: Optional[int] = None


class MessageResponse(CamelModel):
    message: str
    success: bool = True


class FitnessPlanResponse(CamelModel):
    id: int
    user_id: int
    preferences: Dict[str, Any]
    workout_plan: Dict[str, Any]
    meal_plan: Dict[str, Any]
    grocery_list: Optional[Dict[str, Any]] = None
    nutrition_data: Optional[Dict[str, Any]] = None
    summary: Optional[Dict[str, Any]] = None
    weekly_budget: Optional[float] = None
    budget_currency: Optional[str] = None
    actual_cost: Optional[float] = None
    is_active: bool
    created_at: datetime
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None
