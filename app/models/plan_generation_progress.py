import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, func

from app.db.base_class import Base


class GenerationState(str, enum.Enum):
    running = "running"
    complete = "complete"
    failed = "failed"
    cancelled = "cancelled"
    persistence_error = "persistence_error"


TOTAL_STEPS = 6


class PlanGenerationProgress(Base):
    """One row per user: the in-flight or last finished generation attempt."""

    __tablename__ = "plan_generation_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    generation_id = Column(String(36), nullable=False)
    status = Column(String(30), nullable=False, default=GenerationState.running.value)
    is_generating = Column(Boolean, nullable=False, default=True)
    is_complete = Column(Boolean, nullable=False, default=False)
    current_step = Column(Integer, nullable=False, default=1)
    total_steps = Column(Integer, nullable=False, default=TOTAL_STEPS)
    step_message = Column(Text)
    estimated_time_remaining = Column(Integer)
    error_message = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    partial_result_data = Column(JSON)
    input_data = Column(JSON)  # preferences + biometrics the attempt was started with
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def state(self) -> GenerationState:
        return GenerationState(self.status)
