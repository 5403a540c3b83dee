"""Database models."""

# Import all models here to ensure they're recognized by SQLAlchemy
from app.models.user import User, UserRole
from app.models.user_profile import GenderType, UserProfile
from app.models.fitness_plan import FitnessPlan
from app.models.plan_generation_progress import GenerationState, PlanGenerationProgress, TOTAL_STEPS
from app.models.system_setting import SystemSetting
