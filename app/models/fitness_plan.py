from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    DECIMAL,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base


class FitnessPlan(Base):
    __tablename__ = "fitness_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    preferences = Column(JSON, nullable=False)
    workout_plan = Column(JSON, nullable=False)
    meal_plan = Column(JSON, nullable=False)
    grocery_list = Column(JSON)
    nutrition_data = Column(JSON)
    summary = Column(JSON)
    weekly_budget = Column(DECIMAL(10, 2))
    budget_currency = Column(String(3))
    actual_cost = Column(DECIMAL(10, 2))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deactivated_at = Column(DateTime(timezone=True))
    deactivation_reason = Column(Text)

    user = relationship("User", back_populates="fitness_plans")

    # At most one active plan per user, enforced by the database as well
    __table_args__ = (
        Index(
            "uq_fitness_plans_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
