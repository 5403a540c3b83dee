"""
Error taxonomy for fitness plan generation.

Every failure the orchestrator can surface is one of these classes. Each is
captured into the progress record's ``error_message`` for polling clients and
mapped to an HTTP response at the router boundary by ``PlanErrorHandler``.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class PlanGenerationError(Exception):
    """Base exception for plan generation."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class PlanValidationError(PlanGenerationError):
    """Malformed preferences or input, rejected before any state is touched."""
    pass


class EligibilityError(PlanGenerationError):
    """The user may not start a new generation yet (cooldown or global switch)."""

    def __init__(self, message: str, days_remaining: Optional[int] = None):
        self.days_remaining = days_remaining
        super().__init__(message)


class GenerationFailure(PlanGenerationError):
    """An external generation call errored, timed out or returned unusable content."""

    def __init__(self, step: int, step_name: str, cause: Any):
        self.step = step
        self.step_name = step_name
        self.cause = cause
        reason = str(cause) or type(cause).__name__
        super().__init__(
            f"Plan generation failed at step {step}: {reason}",
            cause if isinstance(cause, Exception) else None,
        )


class PersistenceInconsistency(PlanGenerationError):
    """The deactivate/insert pairing failed; the user may be left without an active plan."""

    def __init__(self, message: str, user_id: int, has_active_plan: bool = False,
                 original_error: Optional[Exception] = None):
        self.user_id = user_id
        self.has_active_plan = has_active_plan
        super().__init__(message, original_error)


class ConcurrencyConflict(PlanGenerationError):
    """Another state transition for the same user won the race."""
    pass


class GenerationNotFound(PlanGenerationError):
    """No progress record (or no completed result) exists for the user."""
    pass


class PlanErrorHandler:
    """Maps plan generation errors to HTTP responses."""

    ERROR_MAPPINGS = {
        PlanValidationError: {
            'status_code': status.HTTP_400_BAD_REQUEST,
            'retryable': True,
        },
        EligibilityError: {
            'status_code': status.HTTP_403_FORBIDDEN,
            'retryable': False,
        },
        GenerationFailure: {
            'status_code': status.HTTP_502_BAD_GATEWAY,
            'retryable': True,
        },
        PersistenceInconsistency: {
            'status_code': status.HTTP_500_INTERNAL_SERVER_ERROR,
            'retryable': False,
        },
        ConcurrencyConflict: {
            'status_code': status.HTTP_409_CONFLICT,
            'retryable': True,
        },
        GenerationNotFound: {
            'status_code': status.HTTP_404_NOT_FOUND,
            'retryable': False,
        },
    }

    @classmethod
    def classify_error(cls, error: PlanGenerationError) -> Dict[str, Any]:
        """
        Classify an error and return the response information for it.

        Returns:
            Dictionary with status_code, detail, and retryable flag
        """
        for exc_type, mapping in cls.ERROR_MAPPINGS.items():
            if isinstance(error, exc_type):
                info = mapping.copy()
                break
        else:
            info = {'status_code': status.HTTP_500_INTERNAL_SERVER_ERROR, 'retryable': False}

        detail: Any = error.message
        if isinstance(error, EligibilityError):
            detail = {"message": error.message, "daysRemaining": error.days_remaining}
        info['detail'] = detail
        return info

    @classmethod
    def to_http_exception(cls, error: PlanGenerationError) -> HTTPException:
        info = cls.classify_error(error)
        return HTTPException(status_code=info['status_code'], detail=info['detail'])


def log_alert_handler(error: PersistenceInconsistency):
    """Default alert hook for persistence inconsistencies; wire paging here."""
    logger.critical(
        f"ALERT: plan persistence inconsistency for user {error.user_id} "
        f"(has_active_plan={error.has_active_plan}): {error.message} | cause={error.original_error!r}"
    )
