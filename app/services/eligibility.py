"""Plan generation eligibility rules (role exemption, global switch and cooldown)."""

import math
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import User, UserRole
from app.models.system_setting import SystemSetting
from app.schemas.plan_generation import EligibilityResult
from app.services.async_plan_repository import AsyncFitnessPlanService

SETTING_GLOBALLY_DISABLED = "fitness_coach_globally_disabled"
SETTING_FREQUENCY_DAYS = "plan_generation_frequency_days"

SECONDS_PER_DAY = 60 * 60 * 24
UNRESTRICTED_ROLES = (UserRole.ADMIN, UserRole.TRAINER)


class EligibilityChecker(Protocol):
    async def check_eligibility(self, db: AsyncSession, user_id: int) -> EligibilityResult:
        ...


async def get_system_setting(db: AsyncSession, key: str) -> Optional[str]:
    result = await db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
    return result.scalar_one_or_none()


class AsyncEligibilityService:
    """Default checker backed by ``system_settings`` and the user's plan history.

    Admins and trainers are never restricted.
    """

    def __init__(self, default_frequency_days: Optional[int] = None, clock=None):
        self.default_frequency_days = (
            settings.PLAN_GENERATION_FREQUENCY_DAYS if default_frequency_days is None else default_frequency_days
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _frequency_days(self, db: AsyncSession) -> int:
        value = await get_system_setting(db, SETTING_FREQUENCY_DAYS)
        if value is None:
            return self.default_frequency_days
        try:
            return int(value)
        except ValueError:
            return self.default_frequency_days

    async def check_eligibility(self, db: AsyncSession, user_id: int) -> EligibilityResult:
        role = (await db.execute(select(User.role).where(User.id == user_id))).scalar_one_or_none()
        if role in UNRESTRICTED_ROLES:
            return EligibilityResult(can_start=True)

        disabled = await get_system_setting(db, SETTING_GLOBALLY_DISABLED)
        if disabled == "true":
            return EligibilityResult(
                can_start=False,
                reason_if_not="Plan generation is temporarily disabled. Please try again later.",
            )

        frequency_days = await self._frequency_days(db)
        if frequency_days <= 0:
            return EligibilityResult(can_start=True)

        last_created_at = await AsyncFitnessPlanService.get_latest_plan_created_at(db, user_id)
        if last_created_at is None:
            return EligibilityResult(can_start=True)

        if last_created_at.tzinfo is None:
            last_created_at = last_created_at.replace(tzinfo=timezone.utc)
        days_since_last_plan = math.floor((self._clock() - last_created_at).total_seconds() / SECONDS_PER_DAY)

        if days_since_last_plan < frequency_days:
            days_remaining = frequency_days - days_since_last_plan
            return EligibilityResult(
                can_start=False,
                reason_if_not=f"You can generate a new plan in {days_remaining} day{'' if days_remaining == 1 else 's'}.",
                days_remaining=days_remaining,
            )

        return EligibilityResult(can_start=True)
