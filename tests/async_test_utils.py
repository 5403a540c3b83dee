"""
Async test utilities and helper functions.

Sample language model documents, a scripted text generator and small
database helpers shared by the unit and integration tests.
"""

import asyncio
import json
from collections import defaultdict
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.fitness_plan import FitnessPlan
from app.models.user import User, UserRole
from app.services.plan_generator import (
    GROCERY_LIST_SCHEMA_HINT,
    MEAL_PLAN_SCHEMA_HINT,
    WORKOUT_PLAN_SCHEMA_HINT,
)

WORKOUT_PLAN_DOC = {
    "weeklySchedule": {
        "monday": {
            "name": "Upper Body Strength",
            "workoutType": "strength",
            "targetMuscleGroups": ["chest", "back"],
            "exercises": [
                {"name": "Bench Press", "sets": 4, "reps": 8, "rest": 90},
                {"name": "Bent Over Row", "sets": 4, "reps": 10, "rest": 90},
            ],
            "duration": 50,
            "caloriesBurned": 320,
        },
        "wednesday": {
            "name": "Lower Body",
            "workoutType": "strength",
            "targetMuscleGroups": ["legs"],
            "exercises": [{"name": "Squat", "sets": 5, "reps": 5, "rest": 120}],
            "duration": 45,
            "caloriesBurned": 350,
        },
        "friday": {
            "name": "Conditioning",
            "workoutType": "cardio",
            "targetMuscleGroups": ["full body"],
            "exercises": [{"name": "Rowing Intervals", "sets": 6, "reps": "500m", "rest": 60}],
            "duration": 40,
            "caloriesBurned": 400,
        },
    },
    "notes": "Warm up for 10 minutes before every session.",
}


def _meal(name: str, calories: int, cost: float) -> Dict:
    return {
        "name": name,
        "description": f"Simple {name.lower()}",
        "ingredients": [{"name": "Oats", "quantity": "80", "unit": "g"}],
        "instructions": ["Cook", "Serve"],
        "prepTime": 10,
        "calories": calories,
        "protein": 30,
        "carbs": 60,
        "fat": 15,
        "cost": cost,
    }


MEAL_PLAN_DOC = {
    "weeklyMeals": {
        "monday": {
            "breakfast": _meal("Porridge", 500, 0.8),
            "lunch": _meal("Chicken Rice Bowl", 800, 2.5),
            "dinner": _meal("Salmon and Potatoes", 900, 3.5),
            "snacks": [_meal("Greek Yoghurt", 250, 0.9)],
            "pre_workout": _meal("Banana", 100, 0.2),
            "totalCalories": 2550,
            "totalProtein": 150,
            "totalCarbs": 300,
            "totalFat": 75,
            "totalCost": 7.9,
        },
    },
    "notes": "Batch cook rice and chicken on Sunday.",
}

GROCERY_LIST_DOC = {
    "items": [
        {"name": "Oats", "quantity": "1", "unit": "kg", "price": 1.2, "usedIn": ["Porridge"]},
        {"name": "Chicken breast", "quantity": "1.5", "unit": "kg", "price": 9.5, "usedIn": ["Chicken Rice Bowl"]},
        {"name": "Salmon fillets", "quantity": "4", "unit": "pieces", "price": 12.0, "usedIn": ["Salmon and Potatoes"]},
    ],
    "totalCost": 22.7,
    "budgetAllocation": {"protein": 21.5, "carbs": 1.2},
}


class FakeTextGenerator:
    """
    Scripted stand-in for the language model.

    Replies are chosen by the schema hint the step sends. ``script`` queues
    per-kind overrides consumed before the default document: a string is
    returned as-is, an exception instance is raised. ``gates`` can hold a kind
    until the test releases it; ``entered`` is set when a call of that kind
    begins.
    """

    KINDS = {
        WORKOUT_PLAN_SCHEMA_HINT: "workout",
        MEAL_PLAN_SCHEMA_HINT: "meal",
        GROCERY_LIST_SCHEMA_HINT: "grocery",
    }

    def __init__(self):
        self.defaults = {
            "workout": json.dumps(WORKOUT_PLAN_DOC),
            "meal": json.dumps(MEAL_PLAN_DOC),
            "grocery": json.dumps(GROCERY_LIST_DOC),
        }
        self.script: Dict[str, List] = defaultdict(list)
        self.gates: Dict[str, asyncio.Event] = {}
        self.entered: Dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.calls: Dict[str, int] = defaultdict(int)
        self.prompts: Dict[str, List[str]] = defaultdict(list)

    def hold(self, kind: str) -> asyncio.Event:
        gate = self.gates[kind] = asyncio.Event()
        return gate

    async def generate(self, prompt: str, response_schema_hint: str, system_prompt: str = "") -> str:
        kind = self.KINDS[response_schema_hint]
        self.calls[kind] += 1
        self.prompts[kind].append(prompt)
        self.entered[kind].set()

        gate = self.gates.get(kind)
        if gate is not None:
            await gate.wait()

        if self.script[kind]:
            reply = self.script[kind].pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        return self.defaults[kind]


async def create_user(session: AsyncSession, username: str, is_active: bool = True,
                      role: str = UserRole.CLIENT) -> User:
    user = User(email=f"{username}@example.com", username=username, full_name=username.title(),
                is_active=is_active, role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_plan(session: AsyncSession, user_id: int, is_active: bool = True, **kwargs) -> FitnessPlan:
    plan = FitnessPlan(
        user_id=user_id,
        preferences={"fitnessGoal": "maintenance"},
        workout_plan={"weeklySchedule": {}},
        meal_plan={"weeklyMeals": {}},
        is_active=is_active,
        **kwargs,
    )
    session.add(plan)
    await session.commit()
    await session.refresh(plan)
    return plan


async def wait_until(predicate, attempts: int = 500, interval: float = 0.01):
    """Poll an async predicate until it holds."""
    for _ in range(attempts):
        if await predicate():
            return
        await asyncio.sleep(interval)
    raise AssertionError("condition not reached in time")
