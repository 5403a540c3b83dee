"""Pydantic schemas for request and response validation."""

from .plan_generation import (
    ActivityLevel,
    EligibilityResult,
    FitnessGoal,
    FitnessPlanResponse,
    GenerationStatusResponse,
    GroceryList,
    MealPlan,
    MessageResponse,
    NutritionData,
    PlanGenerationResult,
    PlanGenerationStartRequest,
    PlanPreferences,
    PlanSummary,
    UserBiometrics,
    WorkoutPlan,
)
from .auth import TokenPayload
