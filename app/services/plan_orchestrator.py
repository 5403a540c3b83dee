"""
Fitness plan generation orchestrator.

Drives the six-step pipeline for one user at a time:

    1 nutrition -> 2 workout plan -> 3 meal plan -> 4 grocery list
    -> 5 summary and plan activation -> 6 complete

The durable progress record is the source of truth. Each step reads it,
does its work outside any lock, then commits its output with a
compare-and-set update keyed on the attempt's ``generation_id`` and the step
it started from. A step whose attempt was cancelled, reset or superseded in
the meantime matches no row and its output is dropped.

Within one process a per-user ``asyncio.Lock`` serializes state transitions
and at most one worker task per user advances steps. Locks are never held
across external generation calls.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.plan_generation_progress import GenerationState, PlanGenerationProgress, TOTAL_STEPS
from app.models.user_profile import UserProfile
from app.schemas.plan_generation import (
    GroceryList,
    MealPlan,
    NutritionData,
    PlanGenerationResult,
    PlanPreferences,
    UserBiometrics,
    WorkoutPlan,
)
from app.services.async_plan_repository import (
    AsyncFitnessPlanService,
    REASON_GENERATION_STARTED,
    REASON_RESET,
)
from app.services.async_progress_store import AsyncGenerationProgressService
from app.services.eligibility import AsyncEligibilityService, EligibilityChecker
from app.services.nutrition import biometrics_from_profile, calculate_nutrition
from app.services.plan_errors import (
    ConcurrencyConflict,
    EligibilityError,
    GenerationFailure,
    GenerationNotFound,
    PersistenceInconsistency,
    PlanValidationError,
    log_alert_handler,
)
from app.services.plan_generator import (
    TextGenerator,
    create_plan_summary,
    generate_grocery_list,
    generate_meal_plan,
    generate_workout_plan,
)
from app.utils.logger import plan_logger

logger = logging.getLogger(__name__)

STEP_MESSAGES = {
    1: "Calculating nutrition requirements...",
    2: "Generating workout plan...",
    3: "Creating meal plan...",
    4: "Extracting ingredients and building grocery list...",
    5: "Finalizing your shopping list and plan...",
    6: "Plan generated successfully!",
}

STEP_NAMES = {
    1: "nutrition",
    2: "workout plan",
    3: "meal plan",
    4: "grocery list",
    5: "plan finalization",
}

CANCELLED_MESSAGE = "cancelled by user"
STALE_MESSAGE = "Plan generation timed out and was automatically reset by the system"


def estimate_remaining(step: int, seconds_per_step: int) -> int:
    """Seconds left at ``step``: remaining steps times the per-step heuristic."""
    return max(TOTAL_STEPS - step, 0) * seconds_per_step


class ContinueOutcome(str, Enum):
    advancing = "advancing"
    in_flight = "in_flight"
    already_complete = "already_complete"
    not_generating = "not_generating"


@dataclass
class ContinueResult:
    progress: PlanGenerationProgress
    outcome: ContinueOutcome


class _AttemptAbandoned(Exception):
    """The attempt stopped being the user's running attempt mid-step."""


class PlanGenerationOrchestrator:
    """Per-user plan generation state machine over the progress store."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        text_generator: TextGenerator,
        eligibility_checker: Optional[EligibilityChecker] = None,
        *,
        auto_advance: Optional[bool] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        step_timeout: Optional[float] = None,
        seconds_per_step: Optional[int] = None,
        alert_handler: Callable[[PersistenceInconsistency], Any] = log_alert_handler,
    ):
        self.session_factory = session_factory
        self.text_generator = text_generator
        self.eligibility_checker = eligibility_checker or AsyncEligibilityService()
        self.auto_advance = settings.PLAN_GENERATION_AUTO_ADVANCE if auto_advance is None else auto_advance
        self.max_retries = settings.PLAN_GENERATION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.PLAN_GENERATION_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.step_timeout = settings.PLAN_GENERATION_STEP_TIMEOUT_SECONDS if step_timeout is None else step_timeout
        self.seconds_per_step = (
            settings.PLAN_GENERATION_SECONDS_PER_STEP if seconds_per_step is None else seconds_per_step
        )
        self.alert_handler = alert_handler

        self._locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Dict[int, int] = {}
        self._workers: Dict[int, Tuple[str, asyncio.Task]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.store = AsyncGenerationProgressService

    @asynccontextmanager
    async def _user_lock(self, user_id: int):
        """Hold the user's lock; it is dropped once nobody holds or awaits it and no worker runs."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            self._prune_lock(user_id)

    def _prune_lock(self, user_id: int):
        if self._lock_users.get(user_id, 0) > 0 or user_id in self._workers:
            return
        self._lock_users.pop(user_id, None)
        self._locks.pop(user_id, None)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, user_id: int, preferences: Union[PlanPreferences, Dict[str, Any]],
                    biometrics: Optional[UserBiometrics] = None) -> PlanGenerationProgress:
        """
        Start a new generation, superseding any prior record for the user.

        Deactivates the current active plan, replaces the progress record with
        a fresh step-1 record and schedules the worker. Returns without waiting
        for any step to run.

        Raises:
            PlanValidationError: Raw preferences did not validate
            EligibilityError: The eligibility checker refused the start
            ConcurrencyConflict: A concurrent start from another process won
        """
        if not isinstance(preferences, PlanPreferences):
            try:
                preferences = PlanPreferences.model_validate(preferences)
            except ValidationError as e:
                raise PlanValidationError(f"Invalid plan preferences: {e.error_count()} error(s)", e)

        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                eligibility = await self.eligibility_checker.check_eligibility(db, user_id)
                if not eligibility.can_start:
                    plan_logger.warning("Plan generation refused", "START", user_id=user_id,
                                        reason=eligibility.reason_if_not)
                    raise EligibilityError(
                        eligibility.reason_if_not or "You are not eligible to generate a new plan.",
                        days_remaining=eligibility.days_remaining,
                    )

                if biometrics is None:
                    biometrics = await self._load_biometrics(db, user_id)

                generation_id = str(uuid.uuid4())
                input_data = {
                    "preferences": preferences.model_dump(mode="json", by_alias=True),
                    "biometrics": biometrics.model_dump(mode="json", by_alias=True),
                }
                try:
                    deactivated = await AsyncFitnessPlanService.deactivate_user_plans(
                        db, user_id, REASON_GENERATION_STARTED, commit=False
                    )
                    progress = await self.store.replace(
                        db, user_id, generation_id,
                        step_message=STEP_MESSAGES[1],
                        estimated_time_remaining=estimate_remaining(1, self.seconds_per_step),
                        input_data=input_data,
                        commit=False,
                    )
                    await db.commit()
                    await db.refresh(progress)
                except IntegrityError as e:
                    await db.rollback()
                    raise ConcurrencyConflict("Another plan generation was started at the same time", e)

            plan_logger.info("Plan generation started", "START", user_id=user_id,
                             generation_id=generation_id, deactivated_plans=deactivated)
            self._spawn(user_id, generation_id)
            return progress

    async def continue_generation(self, user_id: int) -> ContinueResult:
        """
        Ask for the next step. Safe to call redundantly: while a step is in
        flight for the user the call reports ``in_flight`` and schedules
        nothing.

        Raises:
            GenerationNotFound: The user has no progress record
        """
        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                progress = await self.store.get_by_user(db, user_id)
            if progress is None:
                raise GenerationNotFound("No plan generation found")

            if progress.is_complete:
                return ContinueResult(progress, ContinueOutcome.already_complete)
            if not progress.is_generating:
                return ContinueResult(progress, ContinueOutcome.not_generating)
            if self.is_in_flight(user_id, progress.generation_id):
                plan_logger.debug("Continue ignored, step already in flight", "CONTINUE",
                                  user_id=user_id, step=progress.current_step)
                return ContinueResult(progress, ContinueOutcome.in_flight)

            self._spawn(user_id, progress.generation_id)
            plan_logger.info("Continuing plan generation", "CONTINUE", user_id=user_id,
                             step=progress.current_step, generation_id=progress.generation_id)
            return ContinueResult(progress, ContinueOutcome.advancing)

    async def cancel(self, user_id: int) -> bool:
        """
        Cancel the running attempt. The record is kept, marked cancelled.

        Returns False when nothing was running (complete, failed or already
        cancelled records are left untouched).

        Raises:
            GenerationNotFound: The user has no progress record
        """
        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                progress = await self.store.get_by_user(db, user_id)
                if progress is None:
                    raise GenerationNotFound("No plan generation found")
                cancelled = await self.store.cancel(db, user_id, CANCELLED_MESSAGE)

        if cancelled:
            plan_logger.warning("Plan generation cancelled", "CANCEL", user_id=user_id,
                                step=progress.current_step, generation_id=progress.generation_id)
        else:
            plan_logger.info("Nothing to cancel", "CANCEL", user_id=user_id, status=progress.status)
        return cancelled

    async def reset(self, user_id: int) -> bool:
        """
        Drop the progress record (stopping any running attempt) and deactivate
        the user's active plans. Idempotent.

        Returns True if there was anything to reset.
        """
        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                try:
                    deleted = await self.store.delete(db, user_id, commit=False)
                    deactivated = await AsyncFitnessPlanService.deactivate_user_plans(
                        db, user_id, REASON_RESET, commit=False
                    )
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise

        plan_logger.info("Plan generation reset", "RESET", user_id=user_id,
                         deleted_record=deleted, deactivated_plans=deactivated)
        return bool(deleted or deactivated)

    async def get_status(self, user_id: int) -> Optional[PlanGenerationProgress]:
        async with self.session_factory() as db:
            return await self.store.get_by_user(db, user_id)

    async def get_result(self, user_id: int) -> PlanGenerationResult:
        """
        Raises:
            GenerationNotFound: No record, or the record is not complete
        """
        progress = await self.get_status(user_id)
        if progress is None or not progress.is_complete:
            raise GenerationNotFound("Plan generation is not complete")
        return PlanGenerationResult.model_validate(progress.partial_result_data)

    def is_in_flight(self, user_id: int, generation_id: Optional[str] = None) -> bool:
        entry = self._workers.get(user_id)
        if entry is None or entry[1].done():
            return False
        return generation_id is None or entry[0] == generation_id

    async def repair_stale_generations(self, max_age_minutes: Optional[int] = None) -> int:
        """Fail and delete running records untouched for ``max_age_minutes``. Returns how many."""
        max_age_minutes = settings.PLAN_GENERATION_STALE_MINUTES if max_age_minutes is None else max_age_minutes
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)

        repaired = 0
        async with self.session_factory() as db:
            stale = [(p.user_id, p.generation_id, p.current_step) for p in await self.store.find_stale(db, cutoff)]
            for user_id, generation_id, step in stale:
                if self.is_in_flight(user_id, generation_id):
                    continue
                try:
                    await self.store.fail(db, user_id, generation_id, STALE_MESSAGE)
                    await self.store.delete(db, user_id)
                except SQLAlchemyError as e:
                    await db.rollback()
                    logger.error(f"Could not reset stale plan generation for user {user_id}: {e}")
                    continue
                repaired += 1
                plan_logger.warning("Stale plan generation reset", "REPAIR", user_id=user_id,
                                    step=step, generation_id=generation_id)
        return repaired

    async def wait_for_idle(self, user_id: Optional[int] = None):
        """Wait for background workers (all users, or one) to finish."""
        while True:
            if user_id is None:
                pending = [task for task in self._tasks if not task.done()]
            else:
                entry = self._workers.get(user_id)
                pending = [entry[1]] if entry and not entry[1].done() else []
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self):
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        logger.info(f"Plan orchestrator stopped ({len(tasks)} worker(s) cancelled)")

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _spawn(self, user_id: int, generation_id: str) -> bool:
        if self.is_in_flight(user_id, generation_id):
            return False
        task = asyncio.create_task(self._worker(user_id, generation_id))
        self._workers[user_id] = (generation_id, task)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_worker_done(user_id, t))
        return True

    def _on_worker_done(self, user_id: int, task: asyncio.Task):
        self._tasks.discard(task)
        entry = self._workers.get(user_id)
        if entry is not None and entry[1] is task:
            del self._workers[user_id]
        self._prune_lock(user_id)

    async def _worker(self, user_id: int, generation_id: str):
        try:
            while await self._advance_once(user_id, generation_id):
                if not self.auto_advance:
                    break
        except _AttemptAbandoned:
            plan_logger.info("Attempt no longer current, discarding step output", "WORKER",
                             user_id=user_id, generation_id=generation_id)
        except GenerationFailure as e:
            await self._fail(user_id, generation_id, e.message)
        except PersistenceInconsistency as e:
            self.alert_handler(e)
            await self._fail(user_id, generation_id, e.message, GenerationState.persistence_error)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in plan generation worker for user {user_id}")
            await self._fail(user_id, generation_id, f"Plan generation failed: {e}")

    async def _advance_once(self, user_id: int, generation_id: str) -> bool:
        """Run the current step of the attempt. Returns True if more steps remain."""
        async with self.session_factory() as db:
            progress = await self.store.get_by_user(db, user_id)
        if progress is None or progress.generation_id != generation_id or not progress.is_generating:
            raise _AttemptAbandoned()

        step = progress.current_step
        preferences = PlanPreferences.model_validate(progress.input_data["preferences"])
        biometrics = UserBiometrics.model_validate(progress.input_data.get("biometrics") or {})
        partial = dict(progress.partial_result_data or {})

        plan_logger.section_start(f"Step {step}: {STEP_NAMES.get(step, 'unknown')}", f"USER{user_id}")

        if step == 1:
            nutrition = calculate_nutrition(biometrics, preferences.activity_level, preferences.fitness_goal)
            partial["nutritionData"] = nutrition.model_dump(mode="json", by_alias=True)
        elif step == 2:
            workout_plan = await self._run_external(
                user_id, generation_id, step,
                lambda: generate_workout_plan(self.text_generator, preferences, biometrics, user_id),
            )
            partial["workoutPlan"] = workout_plan.model_dump(mode="json", by_alias=True, exclude_none=True)
        elif step == 3:
            nutrition = NutritionData.model_validate(partial["nutritionData"])
            meal_plan = await self._run_external(
                user_id, generation_id, step,
                lambda: generate_meal_plan(self.text_generator, preferences, biometrics, nutrition, user_id),
            )
            partial["mealPlan"] = meal_plan.model_dump(mode="json", by_alias=True, exclude_none=True)
        elif step == 4:
            meal_plan = MealPlan.model_validate(partial["mealPlan"])
            grocery_list = await self._run_external(
                user_id, generation_id, step,
                lambda: generate_grocery_list(self.text_generator, preferences, meal_plan, user_id),
            )
            partial["groceryList"] = grocery_list.model_dump(mode="json", by_alias=True, exclude_none=True)
        elif step == 5:
            await self._finalize(user_id, generation_id, preferences, partial)
            return False
        else:
            raise _AttemptAbandoned()

        next_step = step + 1
        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                advanced = await self.store.advance(
                    db, user_id, generation_id,
                    from_step=step,
                    to_step=next_step,
                    step_message=STEP_MESSAGES[next_step],
                    estimated_time_remaining=estimate_remaining(next_step, self.seconds_per_step),
                    partial_result_data=partial,
                )
        if not advanced:
            raise _AttemptAbandoned()

        plan_logger.section_end(f"Step {step}: {STEP_NAMES[step]}", f"USER{user_id}")
        plan_logger.success("Step complete", f"STEP{step}", user_id=user_id,
                            next_step=next_step, generation_id=generation_id)
        return True

    async def _run_external(self, user_id: int, generation_id: str, step: int,
                            call: Callable[[], Awaitable[Any]]):
        """Run one external generation call with a timeout and bounded re-attempts."""
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(call(), timeout=self.step_timeout)
            except asyncio.TimeoutError:
                failure = GenerationFailure(
                    step, STEP_NAMES[step],
                    TimeoutError(f"{STEP_NAMES[step]} timed out after {self.step_timeout}s"),
                )
            except GenerationFailure as e:
                failure = e

            if attempt >= self.max_retries:
                raise failure

            attempt += 1
            plan_logger.warning("Step failed, retrying", f"STEP{step}", user_id=user_id,
                                attempt=attempt, error=failure.message)
            async with self._user_lock(user_id):
                async with self.session_factory() as db:
                    recorded = await self.store.record_retry(
                        db, user_id, generation_id, step, attempt,
                        f"{STEP_MESSAGES[step]} (retry {attempt} of {self.max_retries})",
                    )
            if not recorded:
                raise _AttemptAbandoned()
            if self.retry_delay:
                await asyncio.sleep(self.retry_delay)

    async def _finalize(self, user_id: int, generation_id: str, preferences: PlanPreferences,
                        partial: Dict[str, Any]):
        """Activate the new plan and complete the record in one transaction."""
        nutrition = NutritionData.model_validate(partial["nutritionData"])
        grocery_list = GroceryList.model_validate(partial["groceryList"])
        summary = create_plan_summary(preferences, nutrition, grocery_list)
        partial["summary"] = summary.model_dump(mode="json", by_alias=True)
        result = PlanGenerationResult(
            nutrition_data=nutrition,
            workout_plan=WorkoutPlan.model_validate(partial["workoutPlan"]),
            meal_plan=MealPlan.model_validate(partial["mealPlan"]),
            grocery_list=grocery_list,
            summary=summary,
        )

        async with self._user_lock(user_id):
            async with self.session_factory() as db:
                try:
                    completed = await self.store.complete(
                        db, user_id, generation_id,
                        from_step=5,
                        step_message=STEP_MESSAGES[6],
                        partial_result_data=partial,
                        commit=False,
                    )
                    if not completed:
                        await db.rollback()
                        raise _AttemptAbandoned()
                    plan = await AsyncFitnessPlanService.activate_new_plan(
                        db, user_id, preferences, result, commit=False
                    )
                    await db.commit()
                except SQLAlchemyError as e:
                    await db.rollback()
                    raise await AsyncFitnessPlanService.describe_failure(db, user_id, e)

        plan_logger.section_end("Step 5: plan finalization", f"USER{user_id}")
        plan_logger.success("Plan generation complete", "COMPLETE", user_id=user_id,
                            plan_id=plan.id, generation_id=generation_id)

    async def _fail(self, user_id: int, generation_id: str, error_message: str,
                    state: GenerationState = GenerationState.failed):
        try:
            async with self._user_lock(user_id):
                async with self.session_factory() as db:
                    recorded = await self.store.fail(db, user_id, generation_id, error_message, state)
        except SQLAlchemyError:
            logger.exception(f"Could not record plan generation failure for user {user_id}")
            return
        if recorded:
            plan_logger.error("Plan generation failed", "FAIL", user_id=user_id,
                              generation_id=generation_id, state=state.value, error=error_message)
        else:
            plan_logger.info("Failure of a stale attempt discarded", "FAIL", user_id=user_id,
                             generation_id=generation_id)

    async def _load_biometrics(self, db: AsyncSession, user_id: int) -> UserBiometrics:
        result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return biometrics_from_profile(result.scalar_one_or_none())
