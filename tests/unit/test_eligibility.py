"""
Unit tests for plan generation eligibility rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.system_setting import SystemSetting
from app.models.user import UserRole
from app.services.eligibility import (
    AsyncEligibilityService,
    SETTING_FREQUENCY_DAYS,
    SETTING_GLOBALLY_DISABLED,
)
from tests.async_test_utils import create_plan, create_user

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _checker(default_frequency_days=0):
    return AsyncEligibilityService(default_frequency_days=default_frequency_days, clock=lambda: NOW)


async def _set(db, key, value):
    db.add(SystemSetting(key=key, value=value))
    await db.commit()


@pytest.mark.asyncio
async def test_user_without_plans_can_start(async_db_session, test_user):
    result = await _checker(7).check_eligibility(async_db_session, test_user.id)

    assert result.can_start is True
    assert result.reason_if_not is None


@pytest.mark.asyncio
async def test_globally_disabled(async_db_session, test_user):
    await _set(async_db_session, SETTING_GLOBALLY_DISABLED, "true")

    result = await _checker().check_eligibility(async_db_session, test_user.id)

    assert result.can_start is False
    assert "temporarily disabled" in result.reason_if_not
    assert result.days_remaining is None


@pytest.mark.asyncio
async def test_cooldown_reports_days_remaining(async_db_session, test_user):
    await _set(async_db_session, SETTING_FREQUENCY_DAYS, "7")
    await create_plan(async_db_session, test_user.id, created_at=NOW - timedelta(days=2, hours=5))

    result = await _checker().check_eligibility(async_db_session, test_user.id)

    assert result.can_start is False
    assert result.days_remaining == 5
    assert result.reason_if_not == "You can generate a new plan in 5 days."


@pytest.mark.asyncio
async def test_cooldown_singular_day(async_db_session, test_user):
    await create_plan(async_db_session, test_user.id, created_at=NOW - timedelta(days=6, hours=1))

    result = await _checker(default_frequency_days=7).check_eligibility(async_db_session, test_user.id)

    assert result.days_remaining == 1
    assert result.reason_if_not == "You can generate a new plan in 1 day."


@pytest.mark.asyncio
async def test_cooldown_elapsed(async_db_session, test_user):
    await create_plan(async_db_session, test_user.id, created_at=NOW - timedelta(days=7))

    result = await _checker(default_frequency_days=7).check_eligibility(async_db_session, test_user.id)

    assert result.can_start is True


@pytest.mark.asyncio
async def test_setting_overrides_default_and_bad_values_fall_back(async_db_session, test_user):
    await create_plan(async_db_session, test_user.id, created_at=NOW - timedelta(days=1))

    await _set(async_db_session, SETTING_FREQUENCY_DAYS, "0")
    assert (await _checker(7).check_eligibility(async_db_session, test_user.id)).can_start is True

    setting = await async_db_session.get(SystemSetting, 1)
    setting.value = "weekly"
    await async_db_session.commit()
    assert (await _checker(7).check_eligibility(async_db_session, test_user.id)).days_remaining == 6


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.TRAINER])
async def test_admins_and_trainers_skip_restrictions(async_db_session, role):
    staff = await create_user(async_db_session, f"staff_{role}", role=role)
    await _set(async_db_session, SETTING_FREQUENCY_DAYS, "30")
    await _set(async_db_session, SETTING_GLOBALLY_DISABLED, "true")
    await create_plan(async_db_session, staff.id, created_at=NOW - timedelta(days=1))

    result = await _checker().check_eligibility(async_db_session, staff.id)

    assert result.can_start is True
    assert result.days_remaining is None


@pytest.mark.asyncio
async def test_clients_remain_in_cooldown(async_db_session):
    client = await create_user(async_db_session, "regular", role=UserRole.CLIENT)
    await _set(async_db_session, SETTING_FREQUENCY_DAYS, "30")
    await create_plan(async_db_session, client.id, created_at=NOW - timedelta(days=1))

    result = await _checker().check_eligibility(async_db_session, client.id)

    assert result.can_start is False
    assert result.days_remaining == 29
