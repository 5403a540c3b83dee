"""
Unit tests for the plan generation error taxonomy and HTTP mapping.
"""

import logging

import pytest
from fastapi import HTTPException

from app.services.plan_errors import (
    ConcurrencyConflict,
    EligibilityError,
    GenerationFailure,
    GenerationNotFound,
    PersistenceInconsistency,
    PlanErrorHandler,
    PlanGenerationError,
    PlanValidationError,
    log_alert_handler,
)


@pytest.mark.parametrize("error, status_code", [
    (PlanValidationError("bad input"), 400),
    (EligibilityError("wait", days_remaining=2), 403),
    (GenerationFailure(2, "workout plan", ValueError("empty")), 502),
    (PersistenceInconsistency("lost", user_id=1), 500),
    (ConcurrencyConflict("race"), 409),
    (GenerationNotFound("none"), 404),
    (PlanGenerationError("other"), 500),
])
def test_status_codes(error, status_code):
    exc = PlanErrorHandler.to_http_exception(error)

    assert isinstance(exc, HTTPException)
    assert exc.status_code == status_code


def test_eligibility_detail_carries_days_remaining():
    info = PlanErrorHandler.classify_error(EligibilityError("You can generate a new plan in 2 days.", 2))

    assert info["detail"] == {"message": "You can generate a new plan in 2 days.", "daysRemaining": 2}
    assert info["retryable"] is False


def test_generation_failure_message_names_step():
    error = GenerationFailure(4, "grocery list", TimeoutError())

    assert error.message == "Plan generation failed at step 4: TimeoutError"
    assert isinstance(error.original_error, TimeoutError)


def test_log_alert_handler_logs_critical(caplog):
    error = PersistenceInconsistency("Your new plan could not be saved.", user_id=7, has_active_plan=True)

    with caplog.at_level(logging.CRITICAL, logger="app.services.plan_errors"):
        log_alert_handler(error)

    assert "ALERT" in caplog.text
    assert "user 7" in caplog.text
