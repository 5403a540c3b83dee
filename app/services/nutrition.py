"""
Nutrition target calculation.

Pure functions: Mifflin-St Jeor BMR, activity-scaled TDEE, a percentage goal
adjustment and a goal-specific macro split. Identical inputs always give
identical outputs.
"""

import math
from datetime import date
from typing import Optional, Union

from app.schemas.plan_generation import (
    ActivityLevel,
    FitnessGoal,
    NutritionData,
    UserBiometrics,
    normalize_activity_level,
    normalize_goal,
)

DEFAULT_WEIGHT_KG = 70
DEFAULT_HEIGHT_CM = 170
DEFAULT_AGE = 30

ACTIVITY_MULTIPLIERS = {
    ActivityLevel.sedentary: 1.2,
    ActivityLevel.light: 1.375,
    ActivityLevel.moderate: 1.55,
    ActivityLevel.very_active: 1.725,
    ActivityLevel.extra_active: 1.9,
}
FALLBACK_ACTIVITY_LEVEL = ActivityLevel.light

GOAL_CALORIE_FACTORS = {
    FitnessGoal.weight_loss: 0.8,  # 20% deficit
    FitnessGoal.muscle_gain: 1.1,  # 10% surplus
}

# (protein, carbs, fat) as shares of the adjusted calorie total
MACRO_RATIOS = {
    FitnessGoal.weight_loss: (0.40, 0.25, 0.35),
    FitnessGoal.muscle_gain: (0.30, 0.45, 0.25),
    FitnessGoal.strength: (0.30, 0.40, 0.30),
}
DEFAULT_MACRO_RATIOS = (0.25, 0.50, 0.25)

KCAL_PER_GRAM_PROTEIN = 4
KCAL_PER_GRAM_CARBS = 4
KCAL_PER_GRAM_FAT = 9


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def calculate_bmr(weight: Optional[float], height: Optional[float], age: Optional[int],
                  sex: Optional[str]) -> float:
    weight = weight or DEFAULT_WEIGHT_KG
    height = height or DEFAULT_HEIGHT_CM
    age = age or DEFAULT_AGE

    base = 10 * weight + 6.25 * height - 5 * age
    if (sex or "").lower() == "male":
        return base + 5
    return base - 161


def _resolve_activity(activity_level: Union[str, ActivityLevel, None]) -> ActivityLevel:
    if activity_level is None:
        return FALLBACK_ACTIVITY_LEVEL
    try:
        return normalize_activity_level(activity_level)
    except ValueError:
        return FALLBACK_ACTIVITY_LEVEL


def _resolve_goal(fitness_goal: Union[str, FitnessGoal, None]) -> Optional[FitnessGoal]:
    if fitness_goal is None:
        return None
    try:
        return normalize_goal(fitness_goal)
    except ValueError:
        return None


def calculate_tdee(bmr: float, activity_level: Union[str, ActivityLevel, None]) -> int:
    multiplier = ACTIVITY_MULTIPLIERS[_resolve_activity(activity_level)]
    return round_half_up(bmr * multiplier)


def adjust_calories_for_goal(tdee: int, fitness_goal: Union[str, FitnessGoal, None]) -> int:
    factor = GOAL_CALORIE_FACTORS.get(_resolve_goal(fitness_goal))
    if factor is None:
        return tdee
    return round_half_up(tdee * factor)


def calculate_macros(calories: int, fitness_goal: Union[str, FitnessGoal, None]) -> dict:
    protein_ratio, carb_ratio, fat_ratio = MACRO_RATIOS.get(_resolve_goal(fitness_goal), DEFAULT_MACRO_RATIOS)
    return {
        "protein": round_half_up(calories * protein_ratio / KCAL_PER_GRAM_PROTEIN),
        "carbs": round_half_up(calories * carb_ratio / KCAL_PER_GRAM_CARBS),
        "fat": round_half_up(calories * fat_ratio / KCAL_PER_GRAM_FAT),
    }


def calculate_nutrition(biometrics: Optional[UserBiometrics],
                        activity_level: Union[str, ActivityLevel, None],
                        fitness_goal: Union[str, FitnessGoal, None]) -> NutritionData:
    """Derive daily calorie and macro targets.

    Missing biometrics fall back to 70 kg, 170 cm and 30 years instead of
    raising, so the later steps still run for incomplete profiles.
    """
    biometrics = biometrics or UserBiometrics()
    bmr = calculate_bmr(biometrics.weight, biometrics.height, biometrics.age, biometrics.sex)
    tdee = calculate_tdee(bmr, activity_level)
    calories = adjust_calories_for_goal(tdee, fitness_goal)
    macros = calculate_macros(calories, fitness_goal)

    return NutritionData(
        calories=calories,
        protein=macros["protein"],
        carbs=macros["carbs"],
        fat=macros["fat"],
        bmr=bmr,
        tdee=tdee,
    )


def age_from_date_of_birth(date_of_birth: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if date_of_birth is None:
        return None
    today = today or date.today()
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


# Inclusive bounds a stored profile value must fall within to be used
PROFILE_AGE_RANGE = (13, 100)
PROFILE_HEIGHT_RANGE_CM = (1, 260)
PROFILE_WEIGHT_RANGE_KG = (1, 300)


def _within(value, bounds):
    if value is None:
        return None
    low, high = bounds
    return value if low <= value <= high else None


def biometrics_from_profile(profile) -> UserBiometrics:
    """Build biometrics from a ``UserProfile`` row (or ``None``).

    Values outside the accepted ranges are treated as missing, so the
    calculator falls back to its defaults for them.
    """
    if profile is None:
        return UserBiometrics()
    gender = profile.gender.value if hasattr(profile.gender, "value") else profile.gender
    return UserBiometrics(
        age=_within(age_from_date_of_birth(profile.date_of_birth), PROFILE_AGE_RANGE),
        sex=gender,
        height=_within(float(profile.height_cm) if profile.height_cm is not None else None, PROFILE_HEIGHT_RANGE_CM),
        weight=_within(float(profile.weight_kg) if profile.weight_kg is not None else None, PROFILE_WEIGHT_RANGE_KG),
    )
